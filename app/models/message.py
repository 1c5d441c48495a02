from pydantic import BaseModel


class InboundMessage(BaseModel):
    user_id: str
    content: str = ""
    timestamp: float
    message_id: str | None = None
    message_type: str = "text"
    media_url: str | None = None
    media_mime: str | None = None
    push_name: str | None = None
    is_group: bool = False

    @property
    def is_audio(self) -> bool:
        return self.message_type in {"audio", "ptt", "voice"}
