from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field


class WebhookMetadata(BaseModel):
    sender: Optional[str] = None
    timestamp: Optional[int] = None
    messageId: Optional[str] = None
    remoteJid: Optional[str] = None
    pushName: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("pushName", "push_name", "notifyName"),
    )


class WebhookBody(BaseModel):
    messageType: Optional[str] = "text"
    message: Optional[str] = None
    metadata: Optional[WebhookMetadata] = None
    mediaData: Optional[Any] = None


class WebhookRequest(BaseModel):
    body: WebhookBody


class WebhookResponse(BaseModel):
    success: bool
    message: str
    user_id: Optional[str] = None


class PresenceRequest(BaseModel):
    remoteJid: str
    state: str = "composing"
