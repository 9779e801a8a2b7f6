from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from ai_designer.models import GenerationFailure

RAW_OUTPUT_LIMIT = 2000


class GenerationFailuresRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(
        self,
        *,
        store_id: str,
        user_id: str,
        user_prompt: str,
        error_message: Optional[str],
        model: Optional[str],
        raw_ai_output: Optional[str],
        attempt_count: int,
    ) -> GenerationFailure:
        failure = GenerationFailure(
            store_id=store_id,
            user_id=user_id,
            user_prompt=user_prompt,
            error_message=error_message,
            model=model,
            raw_ai_output=(raw_ai_output or "")[:RAW_OUTPUT_LIMIT],
            attempt_count=attempt_count,
            status="pending_review",
        )
        self.session.add(failure)
        self.session.commit()
        self.session.refresh(failure)
        return failure
