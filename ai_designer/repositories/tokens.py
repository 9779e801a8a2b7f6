from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import delete, or_, select, update
from sqlalchemy.orm import Session

from ai_designer.models import TokenPurchase, utcnow

PENDING_PURCHASE_TTL = timedelta(hours=24)


class TokenPurchasesRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def expire_overdue(self, *, store_id: str, now: datetime) -> int:
        result = self.session.execute(
            update(TokenPurchase)
            .where(
                TokenPurchase.store_id == store_id,
                TokenPurchase.status == "active",
                TokenPurchase.expires_at.is_not(None),
                TokenPurchase.expires_at < now,
            )
            .values(status="expired", updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        return result.rowcount or 0

    def delete_expired(self, *, store_id: str) -> int:
        result = self.session.execute(
            delete(TokenPurchase)
            .where(TokenPurchase.store_id == store_id, TokenPurchase.status == "expired")
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        return result.rowcount or 0

    def delete_stale_pending(self, *, store_id: str, now: datetime) -> int:
        result = self.session.execute(
            delete(TokenPurchase)
            .where(
                TokenPurchase.store_id == store_id,
                TokenPurchase.status == "pending",
                TokenPurchase.created_at < now - PENDING_PURCHASE_TTL,
            )
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        return result.rowcount or 0

    def list_usable(self, *, store_id: str, now: datetime) -> list[TokenPurchase]:
        stmt = (
            select(TokenPurchase)
            .where(
                TokenPurchase.store_id == store_id,
                TokenPurchase.status == "active",
                or_(TokenPurchase.expires_at.is_(None), TokenPurchase.expires_at >= now),
            )
            .order_by(TokenPurchase.expires_at.asc().nulls_last(), TokenPurchase.created_at.asc())
        )
        return list(self.session.scalars(stmt).all())

    def first_with_tokens(self, *, store_id: str, now: datetime) -> Optional[TokenPurchase]:
        stmt = (
            select(TokenPurchase)
            .where(
                TokenPurchase.store_id == store_id,
                TokenPurchase.status == "active",
                TokenPurchase.tokens_remaining > 0,
                or_(TokenPurchase.expires_at.is_(None), TokenPurchase.expires_at >= now),
            )
            .order_by(TokenPurchase.expires_at.asc().nulls_last(), TokenPurchase.created_at.asc())
            .limit(1)
        )
        return self.session.scalars(stmt).first()

    def get_by_payment_id(self, *, payment_id: str) -> Optional[TokenPurchase]:
        stmt = select(TokenPurchase).where(TokenPurchase.payment_id == payment_id)
        return self.session.scalars(stmt).first()

    def decrement(self, *, purchase_id: str, expected_remaining: int) -> bool:
        """Take one token only if nobody else changed the row since it was read."""

        result = self.session.execute(
            update(TokenPurchase)
            .where(TokenPurchase.id == purchase_id, TokenPurchase.tokens_remaining == expected_remaining)
            .values(
                tokens_remaining=TokenPurchase.tokens_remaining - 1,
                tokens_used=TokenPurchase.tokens_used + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        return (result.rowcount or 0) == 1

    def create(
        self,
        *,
        store_id: str,
        user_id: str,
        tokens: int,
        amount_paid: Decimal,
        package_id: Optional[str] = None,
        payment_id: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        status: str = "active",
    ) -> TokenPurchase:
        purchase = TokenPurchase(
            store_id=store_id,
            user_id=user_id,
            package_id=package_id,
            tokens_purchased=tokens,
            tokens_used=0,
            tokens_remaining=tokens,
            amount_paid=amount_paid,
            payment_id=payment_id,
            expires_at=expires_at,
            status=status,
        )
        self.session.add(purchase)
        self.session.commit()
        self.session.refresh(purchase)
        return purchase
