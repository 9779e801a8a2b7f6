from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select

import ai_designer.main as main_module
from ai_designer.llm_client import ChatCompletion, LLMClientError, LLMTimeoutError
from ai_designer.models import (
    DesignerHistory,
    DesignerMetric,
    GenerationFailure,
    PlatformSettings,
    Store,
    StoreDesignState,
    TokenPurchase,
    utcnow,
)
from ai_designer.razorpay_api import RazorpayApiError
from ai_designer.services.design_retry import CLARIFICATION_MESSAGE

STORE_ID = "5b0c1a52-6f2e-4c3b-9d1e-7a8b9c0d1e2f"
USER_ID = "9f8e7d6c-5b4a-4392-8170-6f5e4d3c2b1a"

EXAMPLE_REPLY = (
    "SECTION: hero\nCHANGE: Bold purple gradient\nCOLOR: 280 95% 60%\n---\n"
    "SECTION: footer\nCHANGE: Dark footer with light text\n---"
)


@pytest.fixture()
def api_client(db_session):
    main_module.rate_limiter.reset()
    with TestClient(main_module.app) as client:
        yield client
    main_module.rate_limiter.reset()


@pytest.fixture()
def store(db_session):
    db_session.add(Store(id=STORE_ID, name="Chai Corner", description="Loose-leaf tea"))
    db_session.commit()
    return STORE_ID


def _add_tokens(db_session, tokens: int, *, days: int | None = 30) -> None:
    db_session.add(
        TokenPurchase(
            store_id=STORE_ID,
            user_id=USER_ID,
            tokens_purchased=tokens,
            tokens_used=0,
            tokens_remaining=tokens,
            amount_paid=Decimal("199"),
            status="active",
            expires_at=utcnow() + timedelta(days=days) if days is not None else None,
        )
    )
    db_session.commit()


def _token_total(db_session) -> int:
    db_session.expire_all()
    total = db_session.scalar(
        select(func.coalesce(func.sum(TokenPurchase.tokens_remaining), 0)).where(TokenPurchase.store_id == STORE_ID)
    )
    return int(total)


def _fake_llm(monkeypatch, replies, *, calls: list[dict] | None = None) -> list[dict]:
    recorded: list[dict] = calls if calls is not None else []
    queue = list(replies)

    async def fake_complete(**kwargs):
        recorded.append(kwargs)
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(reply, Exception):
            raise reply
        return ChatCompletion(content=reply, model=kwargs["model"])

    monkeypatch.setattr(main_module.llm_client, "complete", fake_complete)
    return recorded


def _generate(api_client, prompt: str = "Make the hero purple with a gradient"):
    return api_client.post(
        "/ai-designer",
        json={"action": "generate_design", "store_id": STORE_ID, "user_id": USER_ID, "prompt": prompt},
    )


def test_health(api_client):
    response = api_client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"ok": True}


def test_preflight_is_answered_with_cors_headers(api_client):
    response = api_client.options("/ai-designer")

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
    assert "content-type" in response.headers["access-control-allow-headers"]


def test_generate_design_without_tokens_is_402_and_never_calls_model(api_client, db_session, store, monkeypatch):
    calls = _fake_llm(monkeypatch, [EXAMPLE_REPLY])

    response = _generate(api_client)

    assert response.status_code == 402
    assert response.json() == {"success": False, "error": "No tokens remaining. Please buy tokens to continue."}
    assert calls == []
    metric = db_session.scalars(select(DesignerMetric)).one()
    assert metric.action == "generate_design"
    assert metric.success is False
    assert metric.error_type == "no_tokens"


def test_generate_design_compiles_charges_one_token_and_logs_history(api_client, db_session, store, monkeypatch):
    _add_tokens(db_session, 3)
    calls = _fake_llm(monkeypatch, [EXAMPLE_REPLY])

    response = _generate(api_client)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["type"] == "design"
    assert body["tokens_remaining"] == 2
    design = body["design"]
    assert design["css_variables"]["background"] == "280 95% 60%"
    assert '[data-ai="hero"]' in design["css_overrides"]
    assert "linear-gradient" in design["css_overrides"]
    assert design["changes_list"] == ["Hero: Bold purple gradient", "Footer: Dark footer with light text"]

    assert len(calls) == 1
    assert calls[0]["temperature"] == 0.5
    assert calls[0]["max_tokens"] == 1500
    assert calls[0]["model"] == "test/primary-model"
    assert calls[0]["messages"][0]["role"] == "system"
    assert '"Chai Corner"' in calls[0]["messages"][0]["content"]
    assert calls[0]["messages"][1] == {
        "role": "user",
        "content": "Store: Chai Corner. Request: Make the hero purple with a gradient",
    }

    history = db_session.scalars(select(DesignerHistory)).one()
    assert history.id == body["history_id"]
    assert history.tokens_used == 1
    assert history.applied is False
    assert "css_overrides" not in history.ai_response
    assert "linear-gradient" in history.ai_css_overrides
    assert _token_total(db_session) == 2


def test_retry_exhaustion_makes_three_calls_and_records_one_failure(api_client, db_session, store, monkeypatch):
    _add_tokens(db_session, 3)
    calls = _fake_llm(monkeypatch, ["Sure, I'd love to help you with that!"])

    response = _generate(api_client)

    assert response.status_code == 200
    body = response.json()
    assert body["type"] == "text"
    assert body["message"] == CLARIFICATION_MESSAGE
    assert "design" not in body

    assert len(calls) == 3
    assert [call["temperature"] for call in calls] == [0.5, 0.3, 0.3]
    retry_prompt = calls[1]["messages"][-1]["content"]
    assert retry_prompt.startswith("Store: Chai Corner. Request: ")
    assert "FORMAT REMINDER" in retry_prompt

    failure = db_session.scalars(select(GenerationFailure)).one()
    assert failure.attempt_count == 3
    assert failure.status == "pending_review"
    assert failure.model == "test/primary-model"
    assert failure.raw_ai_output == "Sure, I'd love to help you with that!"
    assert _token_total(db_session) == 3

    history = db_session.scalars(select(DesignerHistory)).one()
    assert history.tokens_used == 0
    assert history.ai_response["message"] == CLARIFICATION_MESSAGE


def test_second_attempt_success_charges_once(api_client, db_session, store, monkeypatch):
    _add_tokens(db_session, 2)
    calls = _fake_llm(monkeypatch, ["SECTION: hero\nCHANGE: purple", EXAMPLE_REPLY])

    response = _generate(api_client)

    assert response.status_code == 200
    assert response.json()["type"] == "design"
    assert len(calls) == 2
    assert db_session.scalar(select(func.count()).select_from(GenerationFailure)) == 0
    assert _token_total(db_session) == 1


def test_refusal_is_rejected_without_charge(api_client, db_session, store, monkeypatch):
    _add_tokens(db_session, 2)
    calls = _fake_llm(monkeypatch, ["I'm sorry, but I cannot help with that request."])

    response = _generate(api_client)

    assert response.status_code == 400
    assert response.json()["error"] == "AI could not process this request. Please rephrase your prompt."
    assert len(calls) == 1
    assert _token_total(db_session) == 2


def test_upstream_timeout_maps_to_504(api_client, db_session, store, monkeypatch):
    _add_tokens(db_session, 1)
    _fake_llm(monkeypatch, [LLMTimeoutError(message="too slow")])

    response = _generate(api_client)

    assert response.status_code == 504
    assert response.json()["error"] == "Request timed out. Please try again."
    assert _token_total(db_session) == 1
    assert db_session.scalar(select(func.count()).select_from(DesignerHistory)) == 0


def test_upstream_failure_maps_to_500(api_client, db_session, store, monkeypatch):
    _add_tokens(db_session, 1)
    _fake_llm(monkeypatch, [LLMClientError(message="LLM call failed (502)")])

    response = _generate(api_client)

    assert response.status_code == 500
    assert response.json()["error"] == "Unable to connect to AI. Please try again in a moment."


def test_missing_api_key_is_reported(api_client, db_session, store, monkeypatch):
    _add_tokens(db_session, 1)
    db_session.add(PlatformSettings(openrouter_api_key=None))
    db_session.commit()
    monkeypatch.setattr(main_module.settings, "OPENROUTER_API_KEY", None)

    response = _generate(api_client)

    assert response.status_code == 500
    assert response.json()["error"] == "OpenRouter API key not configured"


def test_platform_settings_row_overrides_env_model(api_client, db_session, store, monkeypatch):
    _add_tokens(db_session, 1)
    db_session.add(
        PlatformSettings(openrouter_api_key="row-key", openrouter_model="row/model", openrouter_fallback_model="row/b")
    )
    db_session.commit()
    calls = _fake_llm(monkeypatch, [EXAMPLE_REPLY])

    response = _generate(api_client)

    assert response.status_code == 200
    assert calls[0]["api_key"] == "row-key"
    assert calls[0]["model"] == "row/model"
    assert calls[0]["fallback_model"] == "row/b"


@pytest.mark.parametrize(
    ("payload", "error"),
    [
        ({"store_id": "not-a-uuid", "user_id": USER_ID, "prompt": "blue"}, "Invalid store_id or user_id"),
        ({"store_id": STORE_ID, "user_id": USER_ID, "prompt": ""}, "Missing required fields"),
        (
            {"store_id": STORE_ID, "user_id": USER_ID, "prompt": "x" * 2001},
            "Prompt too long. Please keep your request under 2000 characters.",
        ),
    ],
)
def test_generate_design_input_errors(api_client, db_session, store, monkeypatch, payload, error):
    calls = _fake_llm(monkeypatch, [EXAMPLE_REPLY])

    response = api_client.post("/ai-designer", json={"action": "generate_design", **payload})

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": error}
    assert calls == []


def test_rate_limit_returns_429(api_client, db_session, store, monkeypatch):
    _fake_llm(monkeypatch, [EXAMPLE_REPLY])

    statuses = [_generate(api_client).status_code for _ in range(11)]

    assert statuses[:10] == [402] * 10
    assert statuses[10] == 429
    assert _generate(api_client).json()["error"] == "Too many requests. Please wait a moment before trying again."


def test_chat_small_talk_is_free_and_skips_token_check(api_client, db_session, store, monkeypatch):
    calls = _fake_llm(monkeypatch, ["Hello! How can I help with your store today?"])

    response = api_client.post(
        "/ai-designer",
        json={
            "action": "chat",
            "store_id": STORE_ID,
            "user_id": USER_ID,
            "messages": [{"role": "user", "content": "hi there"}],
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["type"] == "text"
    assert body["message"] == "Hello! How can I help with your store today?"
    assert "tokens_remaining" not in body
    assert len(calls) == 1
    assert calls[0]["max_tokens"] == 2000
    assert "SECTION:" not in calls[0]["messages"][0]["content"]
    history = db_session.scalars(select(DesignerHistory)).one()
    assert history.tokens_used == 0


def test_chat_token_accounting_is_b_minus_designs(api_client, db_session, store, monkeypatch):
    _add_tokens(db_session, 5)
    _fake_llm(monkeypatch, [EXAMPLE_REPLY])

    conversation = [{"role": "user", "content": "Make the hero purple with a gradient"}]
    for _ in range(2):
        response = api_client.post(
            "/ai-designer",
            json={"action": "chat", "store_id": STORE_ID, "user_id": USER_ID, "messages": conversation},
        )
        assert response.json()["type"] == "design"

    _fake_llm(monkeypatch, ["You're welcome!"])
    response = api_client.post(
        "/ai-designer",
        json={
            "action": "chat",
            "store_id": STORE_ID,
            "user_id": USER_ID,
            "messages": [{"role": "user", "content": "thanks!"}],
        },
    )
    assert response.json()["type"] == "text"

    assert _token_total(db_session) == 5 - 2


def test_chat_keeps_last_twenty_messages(api_client, db_session, store, monkeypatch):
    calls = _fake_llm(monkeypatch, ["Happy to chat."])
    messages = []
    for index in range(30):
        messages.append({"role": "assistant", "content": f"reply {index}"})
        messages.append({"role": "user", "content": f"hello {index}"})

    response = api_client.post(
        "/ai-designer",
        json={"action": "chat", "store_id": STORE_ID, "user_id": USER_ID, "messages": messages},
    )

    assert response.status_code == 200
    sent = calls[0]["messages"]
    assert len(sent) == 1 + 20
    assert sent[-1] == {"role": "user", "content": "hello 29"}


def test_chat_design_request_without_tokens_is_402(api_client, db_session, store, monkeypatch):
    calls = _fake_llm(monkeypatch, [EXAMPLE_REPLY])

    response = api_client.post(
        "/ai-designer",
        json={
            "action": "chat",
            "store_id": STORE_ID,
            "user_id": USER_ID,
            "messages": [{"role": "user", "content": "Change the header color to green"}],
        },
    )

    assert response.status_code == 402
    assert calls == []


def test_apply_reset_and_rollback_flow(api_client, db_session, store, monkeypatch):
    _add_tokens(db_session, 2)
    _fake_llm(monkeypatch, [EXAMPLE_REPLY])
    generated = _generate(api_client).json()

    first = dict(generated["design"])
    first["css_overrides"] += ' .x { background: url("javascript:alert(1)"); }'
    response = api_client.post(
        "/ai-designer",
        json={"action": "apply_design", "store_id": STORE_ID, "design": first, "history_id": generated["history_id"]},
    )
    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Design applied to your live store"}

    db_session.expire_all()
    state = db_session.get(StoreDesignState, STORE_ID)
    assert state.version == 1
    assert "javascript" not in state.current_design["css_overrides"]
    assert db_session.get(DesignerHistory, generated["history_id"]).applied is True

    second = dict(generated["design"], css_variables={"primary": "10 80% 50%"})
    api_client.post("/ai-designer", json={"action": "apply_design", "store_id": STORE_ID, "design": second})

    response = api_client.post(
        "/ai-designer",
        json={"action": "rollback_design", "store_id": STORE_ID, "version_number": 1},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Rolled back to version 1"
    assert body["design"]["css_variables"]["background"] == "280 95% 60%"

    response = api_client.post(
        "/ai-designer",
        json={"action": "rollback_design", "store_id": STORE_ID, "version_number": 9},
    )
    assert response.status_code == 404
    assert response.json()["error"] == "Version not found"

    response = api_client.post("/ai-designer", json={"action": "reset_design", "store_id": STORE_ID})
    assert response.json() == {"success": True, "message": "Store design reset to platform default"}
    db_session.expire_all()
    assert db_session.get(StoreDesignState, STORE_ID) is None


def test_apply_design_requires_design(api_client):
    response = api_client.post("/ai-designer", json={"action": "apply_design", "store_id": STORE_ID})

    assert response.status_code == 400
    assert response.json()["error"] == "Missing store_id or design"


def test_get_token_balance(api_client, db_session):
    _add_tokens(db_session, 4, days=10)
    _add_tokens(db_session, 6, days=None)

    response = api_client.post("/ai-designer", json={"action": "get_token_balance", "store_id": STORE_ID})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["tokens_remaining"] == 10
    assert body["has_tokens"] is True
    assert body["expires_at"]


def test_get_token_balance_rejects_bad_store_id(api_client):
    response = api_client.post("/ai-designer", json={"action": "get_token_balance", "store_id": "abc"})

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Invalid store_id"}


def test_empty_balance_reports_has_tokens_false(api_client, db_session):
    response = api_client.post("/ai-designer", json={"action": "get_token_balance", "store_id": STORE_ID})

    assert response.json() == {"success": True, "tokens_remaining": 0, "has_tokens": False}


def test_create_payment_order(api_client, db_session, monkeypatch):
    captured: dict = {}

    async def fake_create_order(*, key_id, key_secret, amount, currency, notes):
        captured.update(key_id=key_id, key_secret=key_secret, amount=amount, currency=currency, notes=notes)
        return {"id": "order_123", "amount": 49900, "currency": currency}

    monkeypatch.setattr(main_module.razorpay_api, "create_order", fake_create_order)

    response = api_client.post(
        "/ai-designer",
        json={
            "action": "create_payment_order",
            "store_id": STORE_ID,
            "package_id": "pkg_basic",
            "amount": 499,
            "currency": "INR",
        },
    )

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "order_id": "order_123",
        "amount": 49900,
        "razorpay_key_id": "rzp_test_key",
    }
    assert captured["amount"] == Decimal("499")
    assert captured["notes"] == {"type": "ai_tokens", "package_id": "pkg_basic", "store_id": STORE_ID}


def test_create_payment_order_validation_and_gateway_errors(api_client, db_session, monkeypatch):
    response = api_client.post("/ai-designer", json={"action": "create_payment_order", "currency": "INR"})
    assert response.status_code == 400
    assert response.json()["error"] == "Missing amount, currency, or package_id"

    async def failing_create_order(**kwargs):
        raise RazorpayApiError(message="Razorpay order creation failed (401): bad auth")

    monkeypatch.setattr(main_module.razorpay_api, "create_order", failing_create_order)
    response = api_client.post(
        "/ai-designer",
        json={"action": "create_payment_order", "package_id": "pkg", "amount": 10, "currency": "INR"},
    )
    assert response.status_code == 500
    assert response.json()["error"] == "Unable to process payment. Please try again."


def test_create_payment_order_without_credentials(api_client, db_session, monkeypatch):
    monkeypatch.setattr(main_module.settings, "RAZORPAY_KEY_ID", None)

    response = api_client.post(
        "/ai-designer",
        json={"action": "create_payment_order", "package_id": "pkg", "amount": 10, "currency": "INR"},
    )

    assert response.status_code == 500
    assert response.json()["error"] == "Payment not configured"


def test_record_token_purchase_credits_balance(api_client, db_session):
    response = api_client.post(
        "/ai-designer",
        json={
            "action": "record_token_purchase",
            "store_id": STORE_ID,
            "user_id": USER_ID,
            "package_id": "pkg_basic",
            "tokens": 25,
            "amount": "499.00",
            "payment_id": "pay_abc",
        },
    )

    assert response.status_code == 200
    assert response.json()["tokens_remaining"] == 25
    purchase = db_session.scalars(select(TokenPurchase)).one()
    assert purchase.payment_id == "pay_abc"
    assert purchase.amount_paid == Decimal("499.00")


def test_unknown_action(api_client):
    response = api_client.post("/ai-designer", json={"action": "explode", "store_id": STORE_ID})

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Unknown action: explode"}


def test_malformed_body_is_400(api_client):
    response = api_client.post("/ai-designer", json={"store_id": STORE_ID})

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Invalid request body"}


def test_unexpected_errors_return_generic_message(db_session, monkeypatch):
    main_module.rate_limiter.reset()
    _add_tokens(db_session, 1)
    _fake_llm(monkeypatch, [RuntimeError("kaboom")])

    with TestClient(main_module.app, raise_server_exceptions=False) as client:
        response = _generate(client)

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Something went wrong. Please try again later."}


def test_oversized_css_is_rejected():
    from ai_designer.errors import DesignerError
    from ai_designer.services.designer import MAX_CSS_SIZE, _check_size
    from ai_designer.services.theme_compiler import DesignProposal

    proposal = DesignProposal(
        summary="too big",
        css_variables={},
        dark_css_variables={},
        css_overrides="a" * (MAX_CSS_SIZE + 1),
    )

    with pytest.raises(DesignerError, match="CSS too large") as exc_info:
        _check_size(proposal)
    assert exc_info.value.status_code == 400


def test_replayed_payment_is_credited_once(api_client, db_session):
    payload = {
        "action": "record_token_purchase",
        "store_id": STORE_ID,
        "user_id": USER_ID,
        "package_id": "pkg_pro",
        "tokens": 50,
        "amount": "999.00",
        "payment_id": "pay_same",
    }

    first = api_client.post("/ai-designer", json=payload)
    second = api_client.post("/ai-designer", json=payload)

    assert first.json()["tokens_remaining"] == 50
    assert second.status_code == 200
    assert second.json()["tokens_remaining"] == 50
    assert db_session.scalar(select(func.count()).select_from(TokenPurchase)) == 1


def test_design_whose_text_contains_refusal_words_is_accepted(api_client, db_session, store, monkeypatch):
    _add_tokens(db_session, 1)
    calls = _fake_llm(
        monkeypatch,
        [
            "SUMMARY: Focused purple hero\n"
            "SECTION: hero\nCHANGE: Bold gradient banner as an aid to focus shoppers\nCOLOR: 280 95% 60%\n---\n"
            "SECTION: footer\nCHANGE: I'm sorry-proof dark footer with light text\n---"
        ],
    )

    response = _generate(api_client)

    assert response.status_code == 200
    body = response.json()
    assert body["type"] == "design"
    assert body["message"] == "Focused purple hero"
    assert len(calls) == 1
    assert _token_total(db_session) == 0
