from fastapi import APIRouter, HTTPException, Request, status

from app.config import settings
from app.logging_config import get_logger
from app.schemas.webhook import WebhookRequest, WebhookResponse
from app.services.whatsapp_service import is_group_chat

logger = get_logger("webhook")

router = APIRouter()


def _get_request_webhook_secret(request: Request) -> str | None:
    header_secret = request.headers.get("X-Webhook-Secret")
    if header_secret:
        return header_secret.strip()
    query_secret = request.query_params.get("webhook_secret")
    if query_secret:
        return query_secret.strip()
    return None


@router.post("/webhook", response_model=WebhookResponse)
async def handle_webhook(payload: WebhookRequest, http_request: Request):
    """Queue an inbound WhatsApp message for dispatch and return immediately."""
    if settings.webhook_secret and _get_request_webhook_secret(http_request) != settings.webhook_secret:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")

    message = payload.message
    if is_group_chat(message.sender):
        return WebhookResponse(success=True, message="Group messages are ignored")
    if not message.text.strip():
        return WebhookResponse(success=True, message="Empty message ignored")

    dispatcher = getattr(http_request.app.state, "dispatcher", None)
    if dispatcher is None:
        logger.error("Webhook received before dispatcher started")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Dispatcher not running")

    await dispatcher.submit(message)
    logger.info(
        "Inbound message queued",
        extra={"context": {"sender": message.sender, "message_id": message.message_id}},
    )
    return WebhookResponse(success=True, message="Queued", queued=True)
