import asyncio
import random
import time
from datetime import date, datetime
from unittest.mock import Mock

import httpx
import pytest
from conftest import USER, FakeLLM

from app.config import Settings
from app.models import ConversationRecord
from app.services import ai_service
from app.services.ai_service import (
    CONTEXTUAL_FALLBACK,
    CONTEXTUAL_RESPONSES,
    GENERIC_ERROR_MESSAGE,
    NETWORK_ERROR_MESSAGE,
    RATE_LIMIT_ERROR_MESSAGE,
    TIMEOUT_ERROR_MESSAGE,
    ReplyGenerator,
    UpstreamTimeout,
    build_system_prompt,
    error_message_for,
    generate_contextual_response,
    get_llm_provider,
    transcribe_audio,
)
from app.services.intent_service import Intent, IntentResult
from app.services.llm import LLMError, LLMResponse
from app.services.state_machine import ConversationState


class TestSystemPrompt:
    def test_reference_date(self):
        prompt = build_system_prompt(date(2025, 5, 26))
        assert prompt.endswith("26 de maio de 2025 (segunda-feira)")
        assert "<AGENDAMENTO_FLEXIVEL>" in prompt
        assert "<AGENDAMENTO_LISTAR>" in prompt


class TestReplyGenerator:
    def test_returns_content(self):
        llm = FakeLLM(replies=["Olá!"])
        generator = ReplyGenerator(llm, Settings(_env_file=None))
        reply = asyncio.run(generator.generate_reply([{"role": "system", "content": "p"}]))
        assert reply == "Olá!"

    def test_timeout(self):
        def slow_generate(*args, **kwargs):
            time.sleep(0.2)
            return LLMResponse(content="tarde demais", model="fake")

        llm = Mock()
        llm.generate.side_effect = slow_generate
        generator = ReplyGenerator(llm, Settings(_env_file=None, reply_timeout_seconds=0.05))

        with pytest.raises(UpstreamTimeout):
            asyncio.run(generator.generate_reply([{"role": "system", "content": "p"}]))

    def test_provider_errors_propagate(self):
        llm = FakeLLM()
        llm.reply_error = LLMError("limit", status_code=429)
        generator = ReplyGenerator(llm, Settings(_env_file=None))

        with pytest.raises(LLMError):
            asyncio.run(generator.generate_reply([{"role": "system", "content": "p"}]))


class TestErrorMessages:
    @pytest.mark.parametrize(
        "exc,expected",
        [
            (UpstreamTimeout("slow"), TIMEOUT_ERROR_MESSAGE),
            (asyncio.TimeoutError(), TIMEOUT_ERROR_MESSAGE),
            (LLMError("too many", status_code=429), RATE_LIMIT_ERROR_MESSAGE),
            (httpx.ConnectError("refused"), NETWORK_ERROR_MESSAGE),
            (RuntimeError("quota exceeded"), RATE_LIMIT_ERROR_MESSAGE),
            (RuntimeError("connection reset"), NETWORK_ERROR_MESSAGE),
            (LLMError("server error", status_code=500), GENERIC_ERROR_MESSAGE),
            (ValueError("boom"), GENERIC_ERROR_MESSAGE),
        ],
    )
    def test_mapping(self, exc, expected):
        assert error_message_for(exc) == expected


class TestTranscribeAudio:
    def test_transcript_is_stripped(self):
        llm = FakeLLM()
        llm.transcript = "  quero marcar um ensaio  "
        result = asyncio.run(transcribe_audio(llm, b"audio", filename="voice.ogg", mime_type="audio/ogg"))
        assert result == "quero marcar um ensaio"

    def test_empty_transcript_is_none(self):
        assert asyncio.run(transcribe_audio(FakeLLM(), b"audio", filename="voice.ogg")) is None

    def test_failure_is_none(self):
        llm = Mock()
        llm.transcribe_audio.side_effect = LLMError("bad audio", status_code=400)
        assert asyncio.run(transcribe_audio(llm, b"audio", filename="voice.ogg")) is None


class TestContextualResponse:
    def _record(self, state=ConversationState.INITIAL, context=None):
        return ConversationRecord(user_id=USER, current_state=state, context=context or {}, last_update_time=0.0)

    def test_greeting_uses_time_of_day(self):
        reply = generate_contextual_response(
            self._record(), IntentResult(Intent.GREETING, 0.9), datetime(2025, 5, 26, 15, 0), random.Random(1)
        )
        assert reply.startswith("Boa tarde! ")
        assert reply[len("Boa tarde! "):] in CONTEXTUAL_RESPONSES["greeting"]

    def test_morning_greeting(self):
        reply = generate_contextual_response(
            self._record(), IntentResult(Intent.GREETING, 0.9), datetime(2025, 5, 26, 8, 0), random.Random(1)
        )
        assert reply.startswith("Bom dia!")

    def test_thanks(self):
        reply = generate_contextual_response(
            self._record(), IntentResult(Intent.THANKS, 0.9), datetime(2025, 5, 26, 20, 0), random.Random(1)
        )
        assert reply in CONTEXTUAL_RESPONSES["thanks"]

    def test_awaiting_time_names_the_date(self):
        record = self._record(ConversationState.AWAITING_TIME, {"mentioned_date": "2025-05-27"})
        reply = generate_contextual_response(record, IntentResult(), datetime(2025, 5, 26, 10, 0), random.Random(1))
        assert reply.startswith("Para terça-feira dia 27 de maio, ")

    def test_fallback(self):
        reply = generate_contextual_response(self._record(), IntentResult(), datetime(2025, 5, 26, 10, 0))
        assert reply == CONTEXTUAL_FALLBACK


class TestProviderSingleton:
    def test_provider_is_cached(self, monkeypatch):
        monkeypatch.setattr(ai_service, "_llm_provider", None)
        config = Settings(_env_file=None, openai_api_key="test-key")
        first = get_llm_provider(config)
        assert get_llm_provider(config) is first
