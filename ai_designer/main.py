from __future__ import annotations

import logging

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from sqlalchemy.orm import Session

from ai_designer.config import settings
from ai_designer.db import get_session, init_db
from ai_designer.errors import DesignerError
from ai_designer.llm_client import OpenRouterClient
from ai_designer.razorpay_api import RazorpayApiClient
from ai_designer.schemas import DesignerRequest, DesignerResponse
from ai_designer.services.designer import DesignerService, load_platform_config
from ai_designer.services.rate_limit import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Something went wrong. Please try again later."
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}

app = FastAPI(title="Storefront AI Designer", default_response_class=ORJSONResponse)
app.add_middleware(
    CORSMiddleware,
    allow_origins=sorted(set(settings.BACKEND_CORS_ORIGINS)),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

llm_client = OpenRouterClient()
razorpay_api = RazorpayApiClient()
rate_limiter = SlidingWindowRateLimiter(
    max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
    window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
)


@app.on_event("startup")
def startup() -> None:
    init_db()


@app.exception_handler(DesignerError)
async def designer_error_handler(_request: Request, exc: DesignerError) -> ORJSONResponse:
    return ORJSONResponse(
        status_code=exc.status_code,
        content=DesignerResponse(success=False, error=exc.message).to_content(),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(_request: Request, exc: RequestValidationError) -> ORJSONResponse:
    logger.info("ai_designer.invalid_body", extra={"errors": exc.errors()})
    return ORJSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=DesignerResponse(success=False, error="Invalid request body").to_content(),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(_request: Request, exc: Exception) -> ORJSONResponse:
    logger.exception("Unhandled server exception", exc_info=exc)
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=DesignerResponse(success=False, error=GENERIC_ERROR_MESSAGE).to_content(),
    )


@app.get("/health")
def health() -> dict[str, bool]:
    return {"ok": True}


@app.options("/ai-designer")
def ai_designer_preflight() -> ORJSONResponse:
    return ORJSONResponse(status_code=status.HTTP_200_OK, content={"ok": True}, headers=CORS_HEADERS)


def _designer(session: Session) -> DesignerService:
    return DesignerService(
        session,
        llm_client=llm_client,
        razorpay_client=razorpay_api,
        rate_limiter=rate_limiter,
        config=load_platform_config(session),
    )


@app.post("/ai-designer")
async def ai_designer(payload: DesignerRequest, session: Session = Depends(get_session)) -> ORJSONResponse:
    designer = _designer(session)
    action = payload.action

    if action in ("chat", "generate_design"):
        if action == "chat":
            outcome = await designer.chat(
                store_id=payload.store_id,
                user_id=payload.user_id,
                messages=payload.messages,
                theme=payload.theme,
            )
        else:
            outcome = await designer.generate_design(
                store_id=payload.store_id,
                user_id=payload.user_id,
                prompt=payload.prompt,
                theme=payload.theme,
            )
        response = DesignerResponse(
            success=True,
            type=outcome.type,
            message=outcome.message,
            design=outcome.design,
            history_id=outcome.history_id,
            tokens_remaining=outcome.tokens_remaining,
        )
    elif action == "apply_design":
        message = designer.apply_design(
            store_id=payload.store_id,
            design=payload.design,
            history_id=payload.history_id,
        )
        response = DesignerResponse(success=True, message=message)
    elif action == "reset_design":
        response = DesignerResponse(success=True, message=designer.reset_design(store_id=payload.store_id))
    elif action == "rollback_design":
        message, design = designer.rollback_design(
            store_id=payload.store_id,
            version_number=payload.version_number,
        )
        response = DesignerResponse(success=True, message=message, design=design)
    elif action == "get_token_balance":
        balance = designer.get_token_balance(store_id=payload.store_id)
        response = DesignerResponse(
            success=True,
            tokens_remaining=balance.tokens_remaining,
            expires_at=balance.expires_at.isoformat() if balance.expires_at else None,
            has_tokens=balance.has_tokens,
        )
    elif action == "create_payment_order":
        order = await designer.create_payment_order(
            store_id=payload.store_id,
            package_id=payload.package_id,
            amount=payload.amount,
            currency=payload.currency,
        )
        response = DesignerResponse(success=True, **order)
    elif action == "record_token_purchase":
        balance = designer.record_token_purchase(
            store_id=payload.store_id,
            user_id=payload.user_id,
            package_id=payload.package_id,
            tokens=payload.tokens,
            amount=payload.amount,
            payment_id=payload.payment_id,
        )
        response = DesignerResponse(
            success=True,
            message=f"{payload.tokens} tokens added to your account",
            tokens_remaining=balance.tokens_remaining,
            expires_at=balance.expires_at.isoformat() if balance.expires_at else None,
            has_tokens=balance.has_tokens,
        )
    else:
        raise DesignerError(message=f"Unknown action: {action}", status_code=status.HTTP_400_BAD_REQUEST)

    return ORJSONResponse(content=response.to_content())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.AI_DESIGNER_HOST, port=settings.AI_DESIGNER_PORT)
