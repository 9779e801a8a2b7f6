from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ai_designer.models import DesignerHistory


class DesignerHistoryRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_recent(self, *, store_id: str, limit: int = 20) -> list[DesignerHistory]:
        stmt = (
            select(DesignerHistory)
            .where(DesignerHistory.store_id == store_id)
            .order_by(DesignerHistory.created_at.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def create(
        self,
        *,
        store_id: str,
        user_id: str,
        prompt: str,
        ai_response: dict[str, Any],
        ai_css_overrides: Optional[str] = None,
        tokens_used: int = 0,
        response_size_bytes: Optional[int] = None,
    ) -> DesignerHistory:
        record = DesignerHistory(
            store_id=store_id,
            user_id=user_id,
            prompt=prompt,
            ai_response=ai_response,
            ai_css_overrides=ai_css_overrides,
            tokens_used=tokens_used,
            response_size_bytes=response_size_bytes,
            applied=False,
        )
        self.session.add(record)
        self.session.commit()
        self.session.refresh(record)
        return record

    def mark_applied(self, *, history_id: str, store_id: str) -> bool:
        result = self.session.execute(
            update(DesignerHistory)
            .where(DesignerHistory.id == history_id, DesignerHistory.store_id == store_id)
            .values(applied=True)
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        return (result.rowcount or 0) > 0
