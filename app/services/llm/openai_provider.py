from typing import List, Optional

import httpx

from app.logging_config import get_logger
from app.services.llm.base import LLMError, LLMProvider, LLMResponse

logger = get_logger("llm.openai")


class OpenAIProvider(LLMProvider):
    """OpenAI chat-completions and Whisper over plain httpx."""

    def __init__(self, api_key: str, default_model: str = "gpt-4o"):
        self.api_key = api_key
        self.default_model = default_model
        self.base_url = "https://api.openai.com/v1/chat/completions"
        self.audio_url = "https://api.openai.com/v1/audio/transcriptions"

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.api_key}"}

    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 500,
        timeout_seconds: Optional[float] = None,
    ) -> LLMResponse:
        model = model or self.default_model
        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        logger.debug(f"OpenAI request: model={model}, messages_count={len(messages)}")

        timeout = timeout_seconds if timeout_seconds is not None else 60.0
        with httpx.Client(timeout=timeout) as client:
            response = client.post(self.base_url, headers=self._headers(), json=payload)

        if response.status_code != 200:
            logger.error(f"OpenAI error: {response.status_code} {response.text[:500]}")
            raise LLMError(
                f"OpenAI API error: {response.status_code} - {response.text[:200]}",
                status_code=response.status_code,
            )

        data = response.json()
        content = ""
        choices = data.get("choices") or []
        if choices:
            content = (choices[0].get("message") or {}).get("content") or ""
        logger.debug(f"OpenAI content: {content[:100] if content else 'EMPTY'}")

        return LLMResponse(
            content=content.strip(),
            model=data.get("model", model),
            usage=data.get("usage"),
        )

    def transcribe_audio(
        self,
        *,
        audio_bytes: bytes,
        filename: str,
        mime_type: Optional[str] = None,
        language: Optional[str] = "pt",
        model: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> str:
        if not audio_bytes:
            raise ValueError("audio_bytes is empty")

        files = {"file": (filename or "audio.ogg", audio_bytes, mime_type or "application/octet-stream")}
        data = {"model": model or "whisper-1", "response_format": "text"}
        if language:
            data["language"] = language

        timeout = timeout_seconds if timeout_seconds is not None else 30.0
        with httpx.Client(timeout=timeout) as client:
            response = client.post(self.audio_url, headers=self._headers(), files=files, data=data)

        if response.status_code != 200:
            logger.error(f"OpenAI transcription error: {response.status_code} {response.text[:500]}")
            raise LLMError(
                f"OpenAI transcription error: {response.status_code}",
                status_code=response.status_code,
            )

        transcript = (response.text or "").strip()
        if not transcript:
            logger.warning("OpenAI transcription returned empty text")
        return transcript
