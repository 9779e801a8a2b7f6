from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from sqlalchemy.orm import Session

from ai_designer.errors import DesignerError
from ai_designer.models import StoreDesignState, utcnow
from ai_designer.repositories import DesignerHistoryRepository, DesignStateRepository
from ai_designer.services.css_sanitizer import sanitize_css
from ai_designer.services.theme_sections import filter_theme_variables

logger = logging.getLogger(__name__)

VERSION_HISTORY_LIMIT = 10


@dataclass(frozen=True)
class ApplyResult:
    state: StoreDesignState
    css_sanitized: bool


def clean_design(design: Mapping[str, Any]) -> tuple[dict[str, Any], bool]:
    """Return a storable copy of ``design`` and whether its CSS had to be neutralized."""

    cleaned: dict[str, Any] = {
        "summary": str(design.get("summary") or ""),
        "css_variables": filter_theme_variables(design.get("css_variables")),
        "dark_css_variables": filter_theme_variables(design.get("dark_css_variables")),
        "css_overrides": "",
        "changes_list": [str(item) for item in design.get("changes_list") or [] if str(item).strip()],
    }
    result = sanitize_css(design.get("css_overrides"))
    cleaned["css_overrides"] = result.sanitized
    return cleaned, not result.safe


def get(session: Session, *, store_id: str) -> Optional[StoreDesignState]:
    return DesignStateRepository(session).get(store_id=store_id)


def apply(
    session: Session,
    *,
    store_id: str,
    design: Mapping[str, Any],
    history_id: Optional[str] = None,
) -> ApplyResult:
    cleaned, css_sanitized = clean_design(design)
    repo = DesignStateRepository(session)
    now = utcnow()

    state = repo.get(store_id=store_id)
    if state is None:
        state = StoreDesignState(store_id=store_id, version=0, version_history=[])

    history = list(state.version_history or [])
    if state.current_design:
        history.insert(
            0,
            {"version": state.version or 0, "design": state.current_design, "applied_at": now.isoformat()},
        )
    # JSON columns are not mutation-tracked; always assign fresh objects.
    state.version_history = history[:VERSION_HISTORY_LIMIT]
    state.current_design = cleaned
    state.version = (state.version or 0) + 1
    state.last_applied_at = now
    state.updated_at = now
    state = repo.save(state)

    if history_id:
        flipped = DesignerHistoryRepository(session).mark_applied(history_id=history_id, store_id=store_id)
        if not flipped:
            logger.warning("theme_store.history_not_found", extra={"store_id": store_id, "history_id": history_id})

    logger.info(
        "theme_store.applied",
        extra={"store_id": store_id, "version": state.version, "css_sanitized": css_sanitized},
    )
    return ApplyResult(state=state, css_sanitized=css_sanitized)


def reset(session: Session, *, store_id: str) -> bool:
    removed = DesignStateRepository(session).delete(store_id=store_id)
    logger.info("theme_store.reset", extra={"store_id": store_id, "removed": removed})
    return removed


def rollback(session: Session, *, store_id: str, version_number: int) -> dict[str, Any]:
    repo = DesignStateRepository(session)
    state = repo.get(store_id=store_id)
    if state is None or not state.version_history:
        raise DesignerError(message="No version history found", status_code=404, error_type="no_history")

    target = next((entry for entry in state.version_history if entry.get("version") == version_number), None)
    if target is None:
        raise DesignerError(message="Version not found", status_code=404, error_type="version_not_found")

    design = dict(target.get("design") or {})
    state.current_design = design
    state.updated_at = utcnow()
    repo.save(state)
    logger.info("theme_store.rolled_back", extra={"store_id": store_id, "version_number": version_number})
    return design
