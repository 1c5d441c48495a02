import asyncio
import random
from datetime import date, datetime
from typing import List, Optional

import httpx

from app.config import Settings, settings as default_settings
from app.logging_config import get_logger
from app.models import ConversationRecord
from app.services.date_service import MONTH_NAMES, WEEKDAY_NAMES, format_date_human_readable
from app.services.intent_service import Intent, IntentResult
from app.services.llm import LLMError, LLMProvider, OpenAIProvider
from app.services.state_machine import ConversationState

logger = get_logger("ai_service")

SYSTEM_PROMPT_TEMPLATE = """Você é um assistente de agendamento fotográfico alegre e gentil. Responda perguntas de forma clara, educada e humanizada, sempre com um tom positivo e acolhedor.

🎯 AGENDAMENTOS FLEXÍVEIS:
Se o usuário perguntar sobre disponibilidade de forma genérica (ex: "tem horário amanhã?", "quais horários livres hoje?", "tem vaga na terça?"), use a tag <AGENDAMENTO_FLEXIVEL> seguida da data/período mencionado. Exemplo: <AGENDAMENTO_FLEXIVEL> amanhã manhã ou <AGENDAMENTO_FLEXIVEL> terça-feira tarde. O sistema irá verificar a agenda e sugerir horários.

Se o usuário fornecer detalhes específicos de agendamento (data e hora específicas), inclua a tag <AGENDAMENTO_SOLICITADO> seguida pelos detalhes. Exemplo: <AGENDAMENTO_SOLICITADO> Ensaio Fotográfico para 2025-05-28 às 14:30.

🔄 FOLLOW-UP:
Se o usuário responder com feedback sobre horários sugeridos (ex: "muito cedo", "muito tarde", "tem outra opção?"), use a tag <AGENDAMENTO_FOLLOWUP> seguida do último horário sugerido e da data. Exemplo: <AGENDAMENTO_FOLLOWUP> 09:00 2025-05-27 muito cedo. O sistema irá sugerir alternativas mais adequadas.

🔄 MODIFICAÇÕES, CANCELAMENTOS E CONSULTAS:
Para alterações: <AGENDAMENTO_MODIFICAR> Antigo: [data] às [hora] Novo: [data] às [hora]
Para cancelamentos: <AGENDAMENTO_CANCELAR> [data] às [hora]
Para listar agendamentos: <AGENDAMENTO_LISTAR>

IMPORTANTE: Sempre use a tag <AGENDAMENTO_LISTAR> quando o usuário quiser saber seus agendamentos existentes. Exemplos:
- "Quero saber que dia marquei meu ensaio"
- "Quando é minha sessão de fotos?"
- "Em que data está marcado meu ensaio?"
- "Qual dia agendei minha sessão?"

💡 DIRETRIZES DE COMUNICAÇÃO:
- Seja sempre gentil, alegre e use emojis com moderação
- Use técnicas de escassez natural ("acabou de vagar", "último horário", "está saindo rápido")
- Priorize manhãs (9h, 10h, 11h) e tardes (14h, 15h, 16h, 17h)
- Nunca revele informações sobre lotação geral da agenda
- Mantenha respostas concisas e conversacionais
- Se não entender algo, peça esclarecimento de forma simpática

Data atual para referência: {today}"""

TIMEOUT_ERROR_MESSAGE = "Desculpe, minha resposta está demorando mais que o esperado. Pode tentar novamente? 🤔"
NETWORK_ERROR_MESSAGE = "Parece que estou com problemas de conexão. Pode tentar novamente em alguns segundos? 📶"
RATE_LIMIT_ERROR_MESSAGE = (
    "Estou um pouco sobrecarregado no momento. Pode aguardar um minutinho e tentar novamente? ⏳"
)
GENERIC_ERROR_MESSAGE = "Desculpe, ocorreu um erro ao processar sua mensagem."

# Global LLM provider instance
_llm_provider = None


class UpstreamTimeout(Exception):
    """The reply model did not answer within the ceiling."""


def get_llm_provider(config: Settings = default_settings) -> OpenAIProvider:
    """Get or create LLM provider instance."""
    global _llm_provider
    if _llm_provider is None:
        _llm_provider = OpenAIProvider(api_key=config.openai_api_key, default_model=config.openai_model)
    return _llm_provider


def build_system_prompt(today: date) -> str:
    reference = f"{today.day} de {MONTH_NAMES[today.month - 1]} de {today.year} ({WEEKDAY_NAMES[today.weekday()]})"
    return SYSTEM_PROMPT_TEMPLATE.format(today=reference)


class ReplyGenerator:
    """Chat reply with a hard time ceiling; the blocking provider runs in a thread."""

    def __init__(self, llm: LLMProvider, config: Settings = default_settings):
        self.llm = llm
        self.settings = config

    async def generate_reply(self, messages: List[dict]) -> str:
        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(
                    self.llm.generate,
                    messages,
                    self.settings.openai_model,
                    0.7,
                    self.settings.reply_max_tokens,
                ),
                timeout=self.settings.reply_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Reply generation exceeded {self.settings.reply_timeout_seconds}s")
            raise UpstreamTimeout("Timeout generating reply") from e
        return response.content


async def transcribe_audio(
    llm: LLMProvider,
    audio_bytes: bytes,
    *,
    filename: str,
    mime_type: Optional[str] = None,
) -> Optional[str]:
    """Transcribe a voice note to text. Returns None on failure."""
    try:
        transcript = await asyncio.to_thread(
            llm.transcribe_audio,
            audio_bytes=audio_bytes,
            filename=filename,
            mime_type=mime_type,
            language="pt",
        )
        cleaned = (transcript or "").strip()
        return cleaned or None
    except Exception as exc:
        logger.warning(f"Audio transcription failed: {exc}")
        return None


def error_message_for(exc: BaseException) -> str:
    if isinstance(exc, (UpstreamTimeout, asyncio.TimeoutError)):
        return TIMEOUT_ERROR_MESSAGE
    if isinstance(exc, LLMError) and exc.is_rate_limited:
        return RATE_LIMIT_ERROR_MESSAGE
    if isinstance(exc, httpx.TransportError):
        return NETWORK_ERROR_MESSAGE
    text = str(exc).lower()
    if "rate limit" in text or "quota" in text:
        return RATE_LIMIT_ERROR_MESSAGE
    if "network" in text or "connection" in text:
        return NETWORK_ERROR_MESSAGE
    return GENERIC_ERROR_MESSAGE


CONTEXTUAL_RESPONSES = {
    "greeting": [
        "Olá! Como posso ajudar você hoje?",
        "Oi! Tudo bem? Como posso te ajudar?",
        "Olá! Que bom falar com você. Como posso ser útil?",
    ],
    "farewell": [
        "Até a próxima! Sempre que precisar, estou aqui.",
        "Tchau! Foi um prazer ajudar. Até breve!",
        "Até mais! Qualquer dúvida sobre seu agendamento, pode me chamar.",
    ],
    "thanks": [
        "Por nada! Se precisar de mais alguma coisa, é só chamar. 😊",
        "Imagina! Estou sempre por aqui para ajudar.",
        "Eu que agradeço! Qualquer coisa sobre seu ensaio, é só falar. 📸",
    ],
    "ask_for_date": [
        "Para qual data você gostaria de agendar seu ensaio?",
        "Qual seria a melhor data para você?",
        "Em qual data você prefere fazer seu ensaio fotográfico?",
    ],
    "ask_for_time": [
        "Ótimo! E qual horário seria melhor para você?",
        "Perfeito! E em qual horário você prefere?",
        "Essa data funciona! Qual seria o melhor horário para você?",
    ],
    "confusion": [
        "Desculpe, acho que não entendi corretamente. Poderia explicar de outra forma?",
        "Hmm, não tenho certeza se compreendi. Pode dizer de outro jeito?",
        "Peço desculpas pela confusão. Você poderia reformular sua solicitação?",
    ],
}
CONTEXTUAL_FALLBACK = (
    "Estou aqui para ajudar com seu agendamento. Você gostaria de marcar, remarcar ou cancelar um horário?"
)


def _time_greeting(hour: int) -> str:
    if 5 <= hour < 12:
        return "Bom dia!"
    if 12 <= hour < 18:
        return "Boa tarde!"
    return "Boa noite!"


def generate_contextual_response(
    record: ConversationRecord,
    intent: IntentResult,
    now: datetime,
    rng: random.Random | None = None,
) -> str:
    """Canned reply for turns that do not need the model."""
    rng = rng or random

    def pick(category: str) -> str:
        return rng.choice(CONTEXTUAL_RESPONSES[category])

    if intent.intent == Intent.GREETING:
        return f"{_time_greeting(now.hour)} {pick('greeting')}"
    if intent.intent == Intent.FAREWELL:
        return pick("farewell")
    if intent.intent == Intent.THANKS:
        return pick("thanks")
    if intent.intent == Intent.CONFUSION or record.current_state == ConversationState.HANDLING_COMPLAINT:
        return pick("confusion")
    if record.current_state == ConversationState.AWAITING_DATE:
        return pick("ask_for_date")
    if record.current_state == ConversationState.AWAITING_TIME:
        selected = record.context.get("mentioned_date")
        if selected:
            return f"Para {format_date_human_readable(selected)}, {pick('ask_for_time').lower()}"
        return pick("ask_for_time")
    return CONTEXTUAL_FALLBACK
