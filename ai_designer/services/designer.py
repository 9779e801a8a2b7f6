"""Orchestration for every ``/ai-designer`` action.

``DesignerService`` owns one request: it validates input, meters tokens, drives the model through the
parse/validate/retry loop and persists what came out. Expected failures are raised as
``DesignerError`` and turned into JSON by the HTTP layer.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional, Sequence

import orjson
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ai_designer.config import settings
from ai_designer.errors import DesignerError
from ai_designer.llm_client import (
    ChatCompletion,
    LLMClientConfigError,
    LLMClientError,
    LLMTimeoutError,
    OpenRouterClient,
)
from ai_designer.razorpay_api import RazorpayApiClient, RazorpayApiError
from ai_designer.repositories import (
    DesignerHistoryRepository,
    DesignerMetricsRepository,
    GenerationFailuresRepository,
    PlatformRepository,
)
from ai_designer.schemas import ChatMessage, DesignPayload
from ai_designer.security import is_valid_uuid
from ai_designer.services import theme_store, token_metering
from ai_designer.services.chat_intent import is_design_request, is_refusal
from ai_designer.services.css_sanitizer import minify_css, sanitize_css
from ai_designer.services.design_retry import (
    CLARIFICATION_MESSAGE,
    INITIAL_TEMPERATURE,
    Accept,
    Attempt,
    Fallback,
    next_action,
)
from ai_designer.services.rate_limit import SlidingWindowRateLimiter
from ai_designer.services.theme_compiler import DesignProposal, compile_design
from ai_designer.services.theme_parser import parse_design_reply, validate_sections
from ai_designer.services.theme_prompt import HistoryEntry, build_chat_system_prompt, build_design_system_prompt
from ai_designer.services.theme_sections import filter_theme_variables

logger = logging.getLogger(__name__)

MAX_CSS_SIZE = 15000
MAX_RESPONSE_SIZE = 10000
DESIGN_MAX_TOKENS = 1500
CHAT_MAX_TOKENS = 2000
HISTORY_FETCH_LIMIT = 20
DEFAULT_STORE_NAME = "My Store"

INVALID_IDS_MESSAGE = "Invalid store_id or user_id"
INVALID_STORE_MESSAGE = "Invalid store_id"
MISSING_FIELDS_MESSAGE = "Missing required fields"
RATE_LIMITED_MESSAGE = "Too many requests. Please wait a moment before trying again."
API_KEY_MISSING_MESSAGE = "OpenRouter API key not configured"
TIMEOUT_MESSAGE = "Request timed out. Please try again."
UPSTREAM_MESSAGE = "Unable to connect to AI. Please try again in a moment."
REFUSAL_MESSAGE = "AI could not process this request. Please rephrase your prompt."
PAYMENT_FAILED_MESSAGE = "Unable to process payment. Please try again."


@dataclass(frozen=True)
class PlatformConfig:
    """Credentials and model choice for one request, read once from ``platform_settings``."""

    openrouter_api_key: Optional[str]
    model: str
    fallback_model: Optional[str]
    razorpay_key_id: Optional[str]
    razorpay_key_secret: Optional[str]


def load_platform_config(session: Session) -> PlatformConfig:
    row = PlatformRepository(session).get_settings()

    def pick(column: str, fallback: Optional[str]) -> Optional[str]:
        value = getattr(row, column, None) if row is not None else None
        return value or fallback

    return PlatformConfig(
        openrouter_api_key=pick("openrouter_api_key", settings.OPENROUTER_API_KEY),
        model=pick("openrouter_model", settings.OPENROUTER_MODEL) or settings.OPENROUTER_MODEL,
        fallback_model=pick("openrouter_fallback_model", settings.OPENROUTER_FALLBACK_MODEL),
        razorpay_key_id=pick("razorpay_key_id", settings.RAZORPAY_KEY_ID),
        razorpay_key_secret=pick("razorpay_key_secret", settings.RAZORPAY_KEY_SECRET),
    )


@dataclass(frozen=True)
class DesignerOutcome:
    type: str
    message: str
    design: Optional[dict[str, Any]] = None
    history_id: Optional[str] = None
    tokens_remaining: Optional[int] = None
    model_used: Optional[str] = None
    css_sanitized: bool = False
    fallback: bool = False


@dataclass
class _StoreContext:
    name: str
    description: Optional[str]
    current_variables: dict[str, str]
    history: list[HistoryEntry] = field(default_factory=list)


def _validate_ids(store_id: Optional[str], user_id: Optional[str]) -> tuple[str, str]:
    if not is_valid_uuid(store_id) or not is_valid_uuid(user_id):
        raise DesignerError(message=INVALID_IDS_MESSAGE, status_code=400, error_type="invalid_input")
    return store_id, user_id  # type: ignore[return-value]


def _design_size(design: dict[str, Any]) -> int:
    return len(orjson.dumps(design).decode("utf-8"))


def _check_size(proposal: DesignProposal) -> None:
    css_size = len(proposal.css_overrides)
    if css_size > MAX_CSS_SIZE:
        raise DesignerError(
            message=f"CSS too large ({css_size} > {MAX_CSS_SIZE} chars). Please simplify.",
            status_code=400,
            error_type="size_exceeded",
        )
    design_size = _design_size(proposal.to_dict())
    if design_size > MAX_RESPONSE_SIZE:
        raise DesignerError(
            message=f"Response too large ({design_size} > {MAX_RESPONSE_SIZE} chars). Please simplify.",
            status_code=400,
            error_type="size_exceeded",
        )


class DesignerService:
    def __init__(
        self,
        session: Session,
        *,
        llm_client: OpenRouterClient,
        razorpay_client: RazorpayApiClient,
        rate_limiter: SlidingWindowRateLimiter,
        config: PlatformConfig,
    ) -> None:
        self.session = session
        self.llm_client = llm_client
        self.razorpay_client = razorpay_client
        self.rate_limiter = rate_limiter
        self.config = config
        self.metrics = DesignerMetricsRepository(session)

    async def generate_design(
        self,
        *,
        store_id: Optional[str],
        user_id: Optional[str],
        prompt: Optional[str],
        theme: Optional[dict[str, Any]] = None,
    ) -> DesignerOutcome:
        started = time.perf_counter()
        store_id, user_id = _validate_ids(store_id, user_id)
        prompt = (prompt or "").strip()
        try:
            if not prompt:
                raise DesignerError(message=MISSING_FIELDS_MESSAGE, status_code=400, error_type="invalid_input")
            self._check_prompt_length(prompt)
            self._check_rate_limit(store_id)
            token_metering.require_tokens(self.session, store_id=store_id)

            context = self._store_context(store_id, theme=theme)
            user_message = f"Store: {context.name}. Request: {prompt}"
            outcome = await self._run_design_pipeline(
                store_id=store_id,
                user_id=user_id,
                user_prompt=prompt,
                context=context,
                conversation=[{"role": "user", "content": user_message}],
                max_tokens=DESIGN_MAX_TOKENS,
            )
        except DesignerError as exc:
            self._record_failure("generate_design", store_id, user_id, exc, started, prompt_length=len(prompt))
            raise
        self._record_success("generate_design", store_id, user_id, outcome, started, prompt_length=len(prompt))
        return outcome

    async def chat(
        self,
        *,
        store_id: Optional[str],
        user_id: Optional[str],
        messages: Optional[Sequence[ChatMessage]],
        theme: Optional[dict[str, Any]] = None,
    ) -> DesignerOutcome:
        started = time.perf_counter()
        store_id, user_id = _validate_ids(store_id, user_id)
        conversation = [
            {"role": message.role, "content": message.content}
            for message in messages or []
            if message.role in ("user", "assistant")
        ]
        # The model answers the latest user turn; trailing assistant turns carry nothing to answer.
        while conversation and conversation[-1]["role"] != "user":
            conversation.pop()
        user_prompt = conversation[-1]["content"].strip() if conversation else ""
        try:
            if not conversation or not user_prompt:
                raise DesignerError(message=MISSING_FIELDS_MESSAGE, status_code=400, error_type="invalid_input")
            self._check_rate_limit(store_id)
            self._check_prompt_length(user_prompt)

            window = conversation[-settings.MAX_CONVERSATION_MESSAGES :]
            if is_design_request(user_prompt):
                token_metering.require_tokens(self.session, store_id=store_id)
                context = self._store_context(store_id, theme=theme)
                outcome = await self._run_design_pipeline(
                    store_id=store_id,
                    user_id=user_id,
                    user_prompt=user_prompt,
                    context=context,
                    conversation=window,
                    max_tokens=CHAT_MAX_TOKENS,
                )
            else:
                outcome = await self._conversational_reply(
                    store_id=store_id, user_id=user_id, user_prompt=user_prompt, conversation=window
                )
        except DesignerError as exc:
            self._record_failure("chat", store_id, user_id, exc, started, prompt_length=len(user_prompt))
            raise
        self._record_success("chat", store_id, user_id, outcome, started, prompt_length=len(user_prompt))
        return outcome

    async def _conversational_reply(
        self,
        *,
        store_id: str,
        user_id: str,
        user_prompt: str,
        conversation: list[dict[str, str]],
    ) -> DesignerOutcome:
        store = PlatformRepository(self.session).get_store(store_id=store_id)
        system_prompt = build_chat_system_prompt(store.name if store and store.name else DEFAULT_STORE_NAME)
        completion = await self._call_model(
            [{"role": "system", "content": system_prompt}, *conversation],
            temperature=INITIAL_TEMPERATURE,
            max_tokens=CHAT_MAX_TOKENS,
        )
        if is_refusal(completion.content):
            raise DesignerError(message=REFUSAL_MESSAGE, status_code=400, error_type="content_policy")

        message = completion.content.strip() or "I encountered an error. Please try again."
        record = DesignerHistoryRepository(self.session).create(
            store_id=store_id,
            user_id=user_id,
            prompt=user_prompt,
            ai_response={"type": "text", "message": message},
            tokens_used=0,
        )
        return DesignerOutcome(type="text", message=message, history_id=record.id, model_used=completion.model)

    async def _run_design_pipeline(
        self,
        *,
        store_id: str,
        user_id: str,
        user_prompt: str,
        context: _StoreContext,
        conversation: list[dict[str, str]],
        max_tokens: int,
    ) -> DesignerOutcome:
        system_message = {
            "role": "system",
            "content": build_design_system_prompt(
                store_name=context.name,
                store_description=context.description,
                current_variables=context.current_variables,
                history=context.history,
                current_prompt=user_prompt,
            ),
        }
        history_messages = conversation[:-1]
        original_request = conversation[-1]["content"]
        request_messages = [system_message, *conversation]

        state = Attempt.FIRST
        temperature = INITIAL_TEMPERATURE
        while True:
            completion = await self._call_model(request_messages, temperature=temperature, max_tokens=max_tokens)
            reply = parse_design_reply(completion.content)
            # Change text may quote refusal-like phrases; only a reply with no blocks can be a refusal.
            if not reply.sections and is_refusal(completion.content):
                raise DesignerError(message=REFUSAL_MESSAGE, status_code=400, error_type="content_policy")

            result = validate_sections(reply.sections, current_primary=context.current_variables.get("primary"))
            decision = next_action(state, result, original_prompt=original_request)

            if isinstance(decision, Accept):
                break
            if isinstance(decision, Fallback):
                return self._fall_back(
                    store_id=store_id,
                    user_id=user_id,
                    user_prompt=user_prompt,
                    decision=decision,
                    completion=completion,
                )

            logger.info(
                "designer.retrying",
                extra={"store_id": store_id, "attempt": int(decision.attempt), "last_error": result.last_error},
            )
            state = decision.attempt
            temperature = decision.temperature
            request_messages = [system_message, *history_messages, {"role": "user", "content": decision.prompt}]

        proposal = compile_design(reply.sections, current_variables=context.current_variables, summary=reply.summary)
        sanitized = sanitize_css(minify_css(proposal.css_overrides))
        proposal = proposal.with_css_overrides(sanitized.sanitized)
        _check_size(proposal)

        token_metering.deduct_one(self.session, store_id=store_id)

        design = proposal.to_dict()
        stored_response = {key: value for key, value in design.items() if key != "css_overrides"}
        stored_response["type"] = "design"
        record = DesignerHistoryRepository(self.session).create(
            store_id=store_id,
            user_id=user_id,
            prompt=user_prompt,
            ai_response=stored_response,
            ai_css_overrides=proposal.css_overrides or None,
            tokens_used=1,
            response_size_bytes=_design_size(stored_response) + len(proposal.css_overrides),
        )
        remaining = token_metering.balance(self.session, store_id=store_id).tokens_remaining
        logger.info(
            "designer.design_generated",
            extra={
                "store_id": store_id,
                "attempts": int(state) + 1,
                "sections": len(reply.sections),
                "css_sanitized": not sanitized.safe,
            },
        )
        return DesignerOutcome(
            type="design",
            message=proposal.summary,
            design=design,
            history_id=record.id,
            tokens_remaining=remaining,
            model_used=completion.model,
            css_sanitized=not sanitized.safe,
        )

    def _fall_back(
        self,
        *,
        store_id: str,
        user_id: str,
        user_prompt: str,
        decision: Fallback,
        completion: ChatCompletion,
    ) -> DesignerOutcome:
        GenerationFailuresRepository(self.session).create(
            store_id=store_id,
            user_id=user_id,
            user_prompt=user_prompt,
            error_message=decision.last_error,
            model=completion.model,
            raw_ai_output=completion.content,
            attempt_count=decision.attempts,
        )
        record = DesignerHistoryRepository(self.session).create(
            store_id=store_id,
            user_id=user_id,
            prompt=user_prompt,
            ai_response={"type": "text", "message": CLARIFICATION_MESSAGE, "fallback": True},
            tokens_used=0,
        )
        logger.warning(
            "designer.fallback",
            extra={"store_id": store_id, "attempts": decision.attempts, "last_error": decision.last_error},
        )
        return DesignerOutcome(
            type="text",
            message=CLARIFICATION_MESSAGE,
            history_id=record.id,
            model_used=completion.model,
            fallback=True,
        )

    async def _call_model(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
    ) -> ChatCompletion:
        try:
            return await self.llm_client.complete(
                api_key=self.config.openrouter_api_key,
                messages=messages,
                model=self.config.model,
                fallback_model=self.config.fallback_model,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except LLMClientConfigError as exc:
            raise DesignerError(message=API_KEY_MISSING_MESSAGE, status_code=500, error_type="config") from exc
        except LLMTimeoutError as exc:
            logger.warning("designer.llm_timeout", extra={"model": self.config.model})
            raise DesignerError(message=TIMEOUT_MESSAGE, status_code=504, error_type="timeout") from exc
        except LLMClientError as exc:
            logger.warning("designer.llm_failed", extra={"model": self.config.model, "error": str(exc)})
            raise DesignerError(message=UPSTREAM_MESSAGE, status_code=500, error_type="api_error") from exc

    def _store_context(self, store_id: str, *, theme: Optional[dict[str, Any]]) -> _StoreContext:
        store = PlatformRepository(self.session).get_store(store_id=store_id)
        state = theme_store.get(self.session, store_id=store_id)
        current_design = state.current_design if state is not None else None
        if current_design:
            current_variables = filter_theme_variables(current_design.get("css_variables"))
        else:
            current_variables = filter_theme_variables(theme)

        history = [
            HistoryEntry(prompt=record.prompt, applied=record.applied)
            for record in DesignerHistoryRepository(self.session).list_recent(
                store_id=store_id, limit=HISTORY_FETCH_LIMIT
            )
            if (record.ai_response or {}).get("type") != "text" or (record.ai_response or {}).get("fallback")
        ]
        return _StoreContext(
            name=store.name if store and store.name else DEFAULT_STORE_NAME,
            description=store.description if store else None,
            current_variables=current_variables,
            history=history,
        )

    def _check_prompt_length(self, prompt: str) -> None:
        if len(prompt) > settings.MAX_PROMPT_CHARS:
            raise DesignerError(
                message=f"Prompt too long. Please keep your request under {settings.MAX_PROMPT_CHARS} characters.",
                status_code=400,
                error_type="prompt_too_long",
            )

    def _check_rate_limit(self, store_id: str) -> None:
        if not self.rate_limiter.allow(store_id):
            raise DesignerError(message=RATE_LIMITED_MESSAGE, status_code=429, error_type="rate_limited")

    def apply_design(
        self,
        *,
        store_id: Optional[str],
        design: Optional[dict[str, Any]],
        history_id: Optional[str] = None,
    ) -> str:
        if not is_valid_uuid(store_id) or not design:
            raise DesignerError(message="Missing store_id or design", status_code=400, error_type="invalid_input")
        try:
            payload = DesignPayload.model_validate(design)
        except ValidationError as exc:
            raise DesignerError(message="Invalid design payload", status_code=400, error_type="invalid_input") from exc

        result = theme_store.apply(
            self.session,
            store_id=store_id,
            design=payload.model_dump(),
            history_id=history_id if is_valid_uuid(history_id) else None,
        )
        self.metrics.record(
            store_id=store_id,
            action="apply_design",
            success=True,
            design_published=True,
            css_sanitized=result.css_sanitized,
        )
        return "Design applied to your live store"

    def reset_design(self, *, store_id: Optional[str]) -> str:
        if not is_valid_uuid(store_id):
            raise DesignerError(message="Missing store_id", status_code=400, error_type="invalid_input")
        theme_store.reset(self.session, store_id=store_id)
        self.metrics.record(store_id=store_id, action="reset_design", success=True)
        return "Store design reset to platform default"

    def rollback_design(self, *, store_id: Optional[str], version_number: Optional[int]) -> tuple[str, dict[str, Any]]:
        if not is_valid_uuid(store_id) or version_number is None:
            raise DesignerError(
                message="Missing store_id or version_number", status_code=400, error_type="invalid_input"
            )
        design = theme_store.rollback(self.session, store_id=store_id, version_number=version_number)
        self.metrics.record(store_id=store_id, action="rollback_design", success=True, design_published=True)
        return f"Rolled back to version {version_number}", design

    def get_token_balance(self, *, store_id: Optional[str]) -> token_metering.TokenBalance:
        if not is_valid_uuid(store_id):
            raise DesignerError(message=INVALID_STORE_MESSAGE, status_code=400, error_type="invalid_input")
        return token_metering.balance(self.session, store_id=store_id)

    async def create_payment_order(
        self,
        *,
        store_id: Optional[str],
        package_id: Optional[str],
        amount: Optional[Decimal],
        currency: Optional[str],
    ) -> dict[str, Any]:
        if not amount or amount <= 0 or not currency or not package_id:
            raise DesignerError(
                message="Missing amount, currency, or package_id", status_code=400, error_type="invalid_input"
            )
        if not self.config.razorpay_key_id or not self.config.razorpay_key_secret:
            raise DesignerError(message="Payment not configured", status_code=500, error_type="config")

        try:
            order = await self.razorpay_client.create_order(
                key_id=self.config.razorpay_key_id,
                key_secret=self.config.razorpay_key_secret,
                amount=amount,
                currency=currency,
                notes={"type": "ai_tokens", "package_id": package_id, "store_id": store_id or ""},
            )
        except RazorpayApiError as exc:
            logger.error("designer.payment_order_failed", extra={"store_id": store_id, "error": str(exc)})
            raise DesignerError(message=PAYMENT_FAILED_MESSAGE, status_code=500, error_type="payment") from exc

        return {
            "order_id": order["id"],
            "amount": order.get("amount"),
            "razorpay_key_id": self.config.razorpay_key_id,
        }

    def record_token_purchase(
        self,
        *,
        store_id: Optional[str],
        user_id: Optional[str],
        package_id: Optional[str],
        tokens: Optional[int],
        amount: Optional[Decimal],
        payment_id: Optional[str],
    ) -> token_metering.TokenBalance:
        store_id, user_id = _validate_ids(store_id, user_id)
        if not tokens or tokens <= 0 or not payment_id:
            raise DesignerError(message=MISSING_FIELDS_MESSAGE, status_code=400, error_type="invalid_input")
        token_metering.record_purchase(
            self.session,
            store_id=store_id,
            user_id=user_id,
            tokens=tokens,
            amount_paid=amount or Decimal("0"),
            package_id=package_id,
            payment_id=payment_id,
        )
        self.metrics.record(store_id=store_id, user_id=user_id, action="record_token_purchase", success=True)
        return token_metering.balance(self.session, store_id=store_id)

    def _record_success(
        self,
        action: str,
        store_id: str,
        user_id: str,
        outcome: DesignerOutcome,
        started: float,
        *,
        prompt_length: int,
    ) -> None:
        self.metrics.record(
            store_id=store_id,
            user_id=user_id,
            action=action,
            model_used=outcome.model_used,
            tokens_consumed=1 if outcome.type == "design" else 0,
            latency_ms=(time.perf_counter() - started) * 1000,
            success=not outcome.fallback,
            error_type="validation_exhausted" if outcome.fallback else None,
            prompt_length=prompt_length,
            css_sanitized=outcome.css_sanitized,
        )

    def _record_failure(
        self,
        action: str,
        store_id: str,
        user_id: str,
        error: DesignerError,
        started: float,
        *,
        prompt_length: int,
    ) -> None:
        self.metrics.record(
            store_id=store_id,
            user_id=user_id,
            action=action,
            model_used=self.config.model,
            latency_ms=(time.perf_counter() - started) * 1000,
            success=False,
            error_type=error.error_type or "error",
            prompt_length=prompt_length,
        )
