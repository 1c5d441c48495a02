import re
from abc import ABC, abstractmethod

import httpx

from app.config import Settings, settings as default_settings
from app.logging_config import get_logger

logger = get_logger("chatflow_service")

WHATSAPP_SUFFIX = "@s.whatsapp.net"


class WhatsAppTransport(ABC):
    @abstractmethod
    async def send_text(self, user_id: str, text: str) -> bool: ...

    @abstractmethod
    async def set_typing(self, user_id: str, on: bool) -> None: ...

    @abstractmethod
    def get_admin_id(self) -> str | None: ...

    @abstractmethod
    async def download_media(self, url: str) -> bytes: ...


def digits_only(value: str | None) -> str:
    return re.sub(r"\D", "", value or "")


def alternate_jid(user_id: str, country_code: str = "55") -> str | None:
    """``<digits>@s.whatsapp.net`` form of a user id, adding the country code to short numbers."""
    digits = digits_only(user_id.split("@", 1)[0])
    if not digits:
        return None
    if len(digits) <= 11 and not digits.startswith(country_code):
        digits = f"{country_code}{digits}"
    jid = f"{digits}{WHATSAPP_SUFFIX}"
    return None if jid == user_id else jid


class ChatFlowTransport(WhatsAppTransport):
    """WhatsApp through the ChatFlow HTTP API."""

    def __init__(self, config: Settings = default_settings, timeout: float = 30.0):
        self.settings = config
        self.timeout = timeout

    def get_admin_id(self) -> str | None:
        return self.settings.admin_whatsapp_id or None

    async def _send_once(self, jid: str, text: str) -> bool:
        params = {
            "token": self.settings.chatflow_token,
            "instance_id": self.settings.chatflow_instance_id,
            "jid": jid,
            "msg": text,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(self.settings.chatflow_api_url, params=params)
            logger.info(f"ChatFlow response: status={response.status_code}, jid={jid}, body={response.text[:200]}")
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.error(f"Error sending WhatsApp message: {e}", extra={"context": {"jid": jid}})
            return False

    async def send_text(self, user_id: str, text: str) -> bool:
        if not self.settings.chatflow_token or not self.settings.chatflow_instance_id:
            logger.error("ChatFlow token or instance id is missing")
            return False
        if not text:
            logger.warning(f"send_text: empty message for {user_id}")
            return False

        if await self._send_once(user_id, text):
            return True

        retry_jid = alternate_jid(user_id, self.settings.default_country_code)
        if retry_jid and await self._send_once(retry_jid, text):
            logger.info(f"Delivered via alternate jid {retry_jid}")
            return True

        logger.warning(f"Failed to deliver via ChatFlow: jid={user_id}")
        return False

    async def set_typing(self, user_id: str, on: bool) -> None:
        params = {
            "token": self.settings.chatflow_token,
            "instance_id": self.settings.chatflow_instance_id,
            "jid": user_id,
            "state": "composing" if on else "paused",
        }
        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.get(self.settings.chatflow_presence_url, params=params)
            if response.status_code != 200:
                logger.warning(f"Typing indicator rejected: status={response.status_code}, jid={user_id}")
        except httpx.HTTPError as e:
            logger.warning(f"Typing indicator failed: {e}", extra={"context": {"jid": user_id}})

    async def download_media(self, url: str) -> bytes:
        async with httpx.AsyncClient(timeout=60.0, follow_redirects=True) as client:
            response = await client.get(url)
            response.raise_for_status()
            return response.content
