from __future__ import annotations


class DesignerError(RuntimeError):
    """Expected failure surfaced to the caller as ``{"success": false, "error": message}``."""

    def __init__(self, *, message: str, status_code: int = 400, error_type: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_type = error_type
