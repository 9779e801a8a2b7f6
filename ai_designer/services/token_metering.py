from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ai_designer.errors import DesignerError
from ai_designer.models import TokenPurchase, TokenSettings, utcnow
from ai_designer.repositories import PlatformRepository, TokenPurchasesRepository

logger = logging.getLogger(__name__)

NO_TOKENS_MESSAGE = "No tokens remaining. Please buy tokens to continue."
_DEDUCT_ATTEMPTS = 3


@dataclass(frozen=True)
class TokenBalance:
    tokens_remaining: int
    expires_at: Optional[datetime]

    @property
    def has_tokens(self) -> bool:
        return self.tokens_remaining > 0


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def compute_expiry(token_settings: Optional[TokenSettings], *, now: datetime) -> Optional[datetime]:
    """Expiry for a purchase made at ``now``; ``None`` when expiry is switched off."""

    if token_settings is None or not token_settings.token_expiry_enabled:
        return None
    duration = token_settings.token_expiry_duration
    if token_settings.token_expiry_unit == "years":
        return add_months(now, (duration or 1) * 12)
    return add_months(now, duration or 12)


def sweep(session: Session, *, store_id: str, now: Optional[datetime] = None) -> None:
    now = now or utcnow()
    repo = TokenPurchasesRepository(session)
    expired = repo.expire_overdue(store_id=store_id, now=now)
    deleted = repo.delete_expired(store_id=store_id)
    stale = repo.delete_stale_pending(store_id=store_id, now=now)
    if expired or deleted or stale:
        logger.info(
            "token_metering.swept",
            extra={"store_id": store_id, "expired": expired, "deleted": deleted, "stale_pending": stale},
        )


def balance(session: Session, *, store_id: str, now: Optional[datetime] = None) -> TokenBalance:
    now = now or utcnow()
    sweep(session, store_id=store_id, now=now)
    purchases = TokenPurchasesRepository(session).list_usable(store_id=store_id, now=now)
    total = sum(max(purchase.tokens_remaining, 0) for purchase in purchases)
    expiries = [
        _as_utc(purchase.expires_at)
        for purchase in purchases
        if purchase.tokens_remaining > 0 and purchase.expires_at is not None
    ]
    return TokenBalance(tokens_remaining=total, expires_at=min(expiries) if expiries else None)


def require_tokens(session: Session, *, store_id: str, now: Optional[datetime] = None) -> TokenBalance:
    current = balance(session, store_id=store_id, now=now)
    if not current.has_tokens:
        raise DesignerError(message=NO_TOKENS_MESSAGE, status_code=402, error_type="no_tokens")
    return current


def deduct_one(session: Session, *, store_id: str, now: Optional[datetime] = None) -> bool:
    """Take a single token from the purchase that expires first.

    The update is guarded on the ``tokens_remaining`` value that was read, so a concurrent deduction
    makes this one re-read instead of both writing the same number.
    """

    now = now or utcnow()
    repo = TokenPurchasesRepository(session)
    for _ in range(_DEDUCT_ATTEMPTS):
        purchase = repo.first_with_tokens(store_id=store_id, now=now)
        if purchase is None:
            break
        if repo.decrement(purchase_id=purchase.id, expected_remaining=purchase.tokens_remaining):
            session.expire(purchase)
            return True
        session.expire(purchase)
    logger.warning("token_metering.deduct_skipped", extra={"store_id": store_id})
    return False


def record_purchase(
    session: Session,
    *,
    store_id: str,
    user_id: str,
    tokens: int,
    amount_paid: Decimal,
    package_id: Optional[str] = None,
    payment_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TokenPurchase:
    """Credit a new purchase; a payment that was already recorded is returned unchanged."""

    if tokens <= 0:
        raise DesignerError(message="Token count must be positive", status_code=400)
    repo = TokenPurchasesRepository(session)
    if payment_id:
        existing = repo.get_by_payment_id(payment_id=payment_id)
        if existing is not None:
            logger.info("token_metering.purchase_replayed", extra={"store_id": store_id, "payment_id": payment_id})
            return existing

    now = now or utcnow()
    expires_at = compute_expiry(PlatformRepository(session).get_token_settings(), now=now)
    try:
        purchase = repo.create(
            store_id=store_id,
            user_id=user_id,
            tokens=tokens,
            amount_paid=amount_paid,
            package_id=package_id,
            payment_id=payment_id,
            expires_at=expires_at,
        )
    except IntegrityError:
        # A concurrent request recorded the same payment between the lookup and the insert.
        session.rollback()
        existing = repo.get_by_payment_id(payment_id=payment_id) if payment_id else None
        if existing is None:
            raise
        logger.info("token_metering.purchase_replayed", extra={"store_id": store_id, "payment_id": payment_id})
        return existing
    logger.info(
        "token_metering.purchase_recorded",
        extra={"store_id": store_id, "tokens": tokens, "expires_at": expires_at.isoformat() if expires_at else None},
    )
    return purchase

