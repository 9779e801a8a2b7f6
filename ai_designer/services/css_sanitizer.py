from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

BLOCKED_MARKER = "/* BLOCKED */"

_DANGEROUS_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("javascript: URLs", re.compile(r"javascript\s*:", re.IGNORECASE)),
    ("expression()", re.compile(r"expression\s*\(", re.IGNORECASE)),
    ("@import", re.compile(r"@import", re.IGNORECASE)),
    ("script tags", re.compile(r"<script", re.IGNORECASE)),
    ("behavior:", re.compile(r"behavior\s*:", re.IGNORECASE)),
    ("binding:", re.compile(r"binding\s*:", re.IGNORECASE)),
    ("-moz-binding", re.compile(r"-moz-binding", re.IGNORECASE)),
    ("vbscript:", re.compile(r"vbscript\s*:", re.IGNORECASE)),
    ("data:text/html", re.compile(r"data\s*:\s*text/html", re.IGNORECASE)),
)

_CONTENT_STRING_RE = re.compile(r"content\s*:\s*([\"'])[^\"']*\1", re.IGNORECASE)
_COMMENT_RE = re.compile(r"/\*[\s\S]*?\*/")
_WHITESPACE_RE = re.compile(r"\s+")
_PUNCTUATION_SPACE_RE = re.compile(r"\s*([{}:;,])\s*")
_PLACEHOLDER_RE = re.compile(r"__CSS_CONTENT_(\d+)__")


@dataclass(frozen=True)
class SanitizeResult:
    safe: bool
    sanitized: str
    blocked: list[str] = field(default_factory=list)


def dangerous_pattern_names() -> list[str]:
    return [name for name, _ in _DANGEROUS_PATTERNS]


def sanitize_css(css: str | None) -> SanitizeResult:
    if not css or not isinstance(css, str):
        return SanitizeResult(safe=True, sanitized="", blocked=[])

    blocked: list[str] = []
    sanitized = css
    for name, pattern in _DANGEROUS_PATTERNS:
        # Report against the input: an earlier rule can consume part of a later match (binding: in -moz-binding:).
        if pattern.search(css):
            blocked.append(name)
        sanitized = pattern.sub(BLOCKED_MARKER, sanitized)

    if blocked:
        logger.warning("css_sanitizer.blocked_patterns", extra={"blocked": blocked})
    return SanitizeResult(safe=not blocked, sanitized=sanitized, blocked=blocked)


def minify_css(css: str | None) -> str:
    """Collapse whitespace and drop comments, leaving ``content: "..."`` strings intact.

    Run this before ``sanitize_css``: stripping the BLOCKED marker comments afterwards could glue
    the remains of a neutralized construct back together.
    """

    if not css or not isinstance(css, str):
        return ""

    preserved: list[str] = []

    def _stash(match: re.Match[str]) -> str:
        preserved.append(match.group(0))
        return f"__CSS_CONTENT_{len(preserved) - 1}__"

    text = _CONTENT_STRING_RE.sub(_stash, css)
    text = _COMMENT_RE.sub("", text)
    text = _WHITESPACE_RE.sub(" ", text)
    text = _PUNCTUATION_SPACE_RE.sub(r"\1", text)
    text = text.replace(";}", "}").strip()
    return _PLACEHOLDER_RE.sub(lambda match: preserved[int(match.group(1))], text)
