from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

SETTINGS_ID = "00000000-0000-0000-0000-000000000000"
TOKEN_SETTINGS_ID = "00000000-0000-0000-0000-000000000001"


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class Store(Base):
    __tablename__ = "stores"

    id: Mapped[str] = mapped_column(String(length=36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class PlatformSettings(Base):
    __tablename__ = "platform_settings"

    id: Mapped[str] = mapped_column(String(length=36), primary_key=True, default=lambda: SETTINGS_ID)
    openrouter_api_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    openrouter_model: Mapped[str | None] = mapped_column(String(length=255), nullable=True)
    openrouter_fallback_model: Mapped[str | None] = mapped_column(String(length=255), nullable=True)
    razorpay_key_id: Mapped[str | None] = mapped_column(String(length=255), nullable=True)
    razorpay_key_secret: Mapped[str | None] = mapped_column(Text, nullable=True)


class TokenSettings(Base):
    __tablename__ = "ai_token_settings"

    id: Mapped[str] = mapped_column(String(length=36), primary_key=True, default=lambda: TOKEN_SETTINGS_ID)
    token_expiry_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    token_expiry_duration: Mapped[int] = mapped_column(Integer, nullable=False, default=12)
    token_expiry_unit: Mapped[str] = mapped_column(String(length=16), nullable=False, default="months")


class TokenPurchase(Base):
    __tablename__ = "ai_token_purchases"

    id: Mapped[str] = mapped_column(String(length=36), primary_key=True, default=_new_id)
    store_id: Mapped[str] = mapped_column(String(length=36), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(length=36), nullable=False)
    package_id: Mapped[str | None] = mapped_column(String(length=36), nullable=True)
    tokens_purchased: Mapped[int] = mapped_column(Integer, nullable=False)
    tokens_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tokens_remaining: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    payment_id: Mapped[str | None] = mapped_column(String(length=255), nullable=True, unique=True)
    status: Mapped[str] = mapped_column(String(length=16), nullable=False, default="active", index=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class StoreDesignState(Base):
    __tablename__ = "store_design_state"

    store_id: Mapped[str] = mapped_column(String(length=36), primary_key=True)
    current_design: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version_history: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    last_applied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class DesignerHistory(Base):
    __tablename__ = "ai_designer_history"

    id: Mapped[str] = mapped_column(String(length=36), primary_key=True, default=_new_id)
    store_id: Mapped[str] = mapped_column(String(length=36), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(length=36), nullable=False)
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    ai_response: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    ai_css_overrides: Mapped[str | None] = mapped_column(Text, nullable=True)
    response_size_bytes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tokens_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    applied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )


class GenerationFailure(Base):
    __tablename__ = "ai_generation_failures"

    id: Mapped[str] = mapped_column(String(length=36), primary_key=True, default=_new_id)
    store_id: Mapped[str] = mapped_column(String(length=36), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(length=36), nullable=False)
    user_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    model: Mapped[str | None] = mapped_column(String(length=255), nullable=True)
    raw_ai_output: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(String(length=32), nullable=False, default="pending_review", index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class DesignerMetric(Base):
    __tablename__ = "ai_designer_metrics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    store_id: Mapped[str] = mapped_column(String(length=36), nullable=False, index=True)
    user_id: Mapped[str | None] = mapped_column(String(length=36), nullable=True)
    action: Mapped[str] = mapped_column(String(length=64), nullable=False)
    model_used: Mapped[str | None] = mapped_column(String(length=255), nullable=True)
    tokens_consumed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    latency_ms: Mapped[float | None] = mapped_column(Float, nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error_type: Mapped[str | None] = mapped_column(String(length=255), nullable=True)
    prompt_length: Mapped[int | None] = mapped_column(Integer, nullable=True)
    design_published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    css_sanitized: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
