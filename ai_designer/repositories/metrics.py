from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ai_designer.models import DesignerMetric

logger = logging.getLogger(__name__)


class DesignerMetricsRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def record(
        self,
        *,
        store_id: str,
        action: str,
        success: bool,
        user_id: Optional[str] = None,
        model_used: Optional[str] = None,
        tokens_consumed: int = 0,
        latency_ms: Optional[float] = None,
        error_type: Optional[str] = None,
        prompt_length: Optional[int] = None,
        design_published: bool = False,
        css_sanitized: bool = False,
    ) -> None:
        """Metrics never fail the request; write errors are logged and rolled back."""

        metric = DesignerMetric(
            store_id=store_id,
            user_id=user_id,
            action=action,
            model_used=model_used,
            tokens_consumed=tokens_consumed,
            latency_ms=latency_ms,
            success=success,
            error_type=error_type,
            prompt_length=prompt_length,
            design_published=design_published,
            css_sanitized=css_sanitized,
        )
        try:
            self.session.add(metric)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("metrics.write_failed", extra={"store_id": store_id, "action": action})
