import time
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from pydantic import ValidationError
from starlette.requests import ClientDisconnect

from app.logging_config import get_logger
from app.models import InboundMessage
from app.schemas.webhook import PresenceRequest, WebhookBody, WebhookResponse
from app.services.message_service import ConversationOrchestrator, get_orchestrator

logger = get_logger("webhook")

router = APIRouter()

TYPING_STATES = {"composing", "typing", "recording"}


def _normalize_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """Accept both the wrapped ``{"body": {...}}`` form and a bare ChatFlow body."""
    body = payload.get("body")
    if isinstance(body, dict):
        return body
    return payload


def _media_fields(media: Any) -> tuple[str | None, str | None]:
    if isinstance(media, dict):
        return media.get("url") or media.get("mediaUrl"), media.get("mimetype") or media.get("mimeType")
    if isinstance(media, str) and media.startswith("http"):
        return media, None
    return None, None


def build_inbound_message(body: WebhookBody) -> InboundMessage | None:
    metadata = body.metadata
    if metadata is None:
        return None
    user_id = metadata.remoteJid or metadata.sender
    if not user_id:
        return None
    media_url, media_mime = _media_fields(body.mediaData)
    return InboundMessage(
        user_id=user_id,
        content=(body.message or "").strip(),
        timestamp=float(metadata.timestamp) if metadata.timestamp else time.time(),
        message_id=metadata.messageId,
        message_type=(body.messageType or "text").lower(),
        media_url=media_url,
        media_mime=media_mime,
        push_name=metadata.pushName,
        is_group=user_id.endswith("@g.us"),
    )


async def _read_json(request: Request) -> dict[str, Any] | WebhookResponse:
    try:
        payload = await request.json()
    except ClientDisconnect:
        logger.info("Webhook client disconnected during read")
        return WebhookResponse(success=True, message="Client disconnected")
    except Exception as exc:
        raw = await request.body()
        if not raw or not raw.strip():
            logger.info("Webhook ping with empty body")
            return WebhookResponse(success=True, message="Empty payload")
        logger.warning(
            "Webhook payload is not valid JSON",
            extra={"context": {"error": str(exc), "body_preview": raw[:200].decode("utf-8", "ignore")}},
        )
        return WebhookResponse(success=False, message="Invalid JSON payload")

    if not isinstance(payload, dict):
        return WebhookResponse(success=False, message="Invalid payload format")
    return payload


@router.post("/webhook", response_model=WebhookResponse)
async def handle_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    """Inbound WhatsApp message from ChatFlow. Processing happens after the response."""
    payload = await _read_json(request)
    if isinstance(payload, WebhookResponse):
        return payload

    try:
        body = WebhookBody.model_validate(_normalize_payload(payload))
    except ValidationError as e:
        logger.warning("Webhook payload failed validation", extra={"context": {"errors": e.errors()}})
        return WebhookResponse(success=False, message="Invalid payload")

    inbound = build_inbound_message(body)
    if inbound is None:
        return WebhookResponse(success=False, message="Missing sender")

    if inbound.is_group:
        return WebhookResponse(success=True, message="Group message ignored", user_id=inbound.user_id)

    if not inbound.content and not inbound.is_audio:
        return WebhookResponse(success=True, message="Empty message ignored", user_id=inbound.user_id)

    logger.info(
        "Webhook received",
        extra={
            "context": {
                "user_id": inbound.user_id,
                "message_id": inbound.message_id,
                "message_type": inbound.message_type,
            }
        },
    )
    background_tasks.add_task(orchestrator.handle_inbound, inbound)
    return WebhookResponse(success=True, message="Accepted", user_id=inbound.user_id)


@router.post("/webhook/presence", response_model=WebhookResponse)
async def handle_presence(
    payload: PresenceRequest,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    """Typing indicator from the user's side; only 'composing'-like states count."""
    if payload.state.lower() not in TYPING_STATES:
        return WebhookResponse(success=True, message="Ignored", user_id=payload.remoteJid)
    await orchestrator.handle_typing(payload.remoteJid)
    return WebhookResponse(success=True, message="Typing recorded", user_id=payload.remoteJid)
