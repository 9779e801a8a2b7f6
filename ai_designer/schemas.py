from __future__ import annotations

from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str = ""


class DesignerRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    action: str = Field(min_length=1)
    store_id: str | None = None
    user_id: str | None = None
    prompt: str | None = None
    messages: list[ChatMessage] | None = None
    design: dict[str, Any] | None = None
    history_id: str | None = None
    theme: dict[str, Any] | None = None
    version_number: int | None = None
    package_id: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    tokens: int | None = None
    payment_id: str | None = None

    @field_validator("store_id", "user_id", "history_id", "package_id", mode="before")
    @classmethod
    def strip_identifier(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip() or None
        return value


class DesignPayload(BaseModel):
    summary: str = ""
    css_variables: dict[str, str] = Field(default_factory=dict)
    dark_css_variables: dict[str, str] = Field(default_factory=dict)
    css_overrides: str = ""
    changes_list: list[str] = Field(default_factory=list)


class DesignerResponse(BaseModel):
    success: bool
    type: Literal["design", "text"] | None = None
    message: str | None = None
    design: dict[str, Any] | None = None
    history_id: str | None = None
    tokens_remaining: int | None = None
    expires_at: str | None = None
    has_tokens: bool | None = None
    order_id: str | None = None
    amount: int | None = None
    razorpay_key_id: str | None = None
    error: str | None = None

    def to_content(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)
