import asyncio
import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from app.config import Settings, settings as default_settings
from app.logging_config import get_logger
from app.services.llm.base import LLMProvider

logger = get_logger("intent_service")

ACT_DIRECTLY_CONFIDENCE = 0.8
BYPASS_PIPELINE_CONFIDENCE = 0.9
AI_CONFIRMATION_CONFIDENCE = 0.7


class Intent(str, Enum):
    SCHEDULE = "schedule"
    RESCHEDULE = "reschedule"
    CANCEL = "cancel"
    LIST = "list"
    GREETING = "greeting"
    FAREWELL = "farewell"
    THANKS = "thanks"
    CONFIRMATION = "confirmation"
    REJECTION = "rejection"
    CONFUSION = "confusion"


@dataclass
class IntentResult:
    intent: Intent | None = None
    confidence: float = 0.0
    context: dict[str, Any] = field(default_factory=dict)
    reasoning: str | None = None
    ai_analysis: bool = False

    def is_(self, intent: Intent, min_confidence: float = 0.0) -> bool:
        return self.intent == intent and self.confidence >= min_confidence


def _whole(pattern: str) -> Callable[[str], bool]:
    regex = re.compile(rf"^(?:{pattern})[\s!,.?]*$", re.IGNORECASE)
    return lambda text: bool(regex.match(text))


def _contains(pattern: str) -> Callable[[str], bool]:
    regex = re.compile(pattern, re.IGNORECASE)
    return lambda text: bool(regex.search(text))


GREETING_PATTERN = r"oi|olá|ola|bom dia|boa tarde|boa noite|e aí|e ai|hey|hi"
THANKS_PATTERN = r"obrigad[ao]|valeu|thanks|grat[ao]|vlw|muito obrigad[ao]"
FAREWELL_PATTERN = r"tchau|até mais|ate mais|até|ate|adeus|bye|goodbye|flw|falou"
CONFIRMATION_PATTERN = (
    r"sim|s|yes|isso|confirmo|pode ser|claro|exato|exatamente|certo|confirmar|ok|beleza|blz|"
    r"perfeito|combinado|fechado|tá bom|ta bom|tá certo|ta certo"
)
REJECTION_PATTERN = (
    r"não quero|nao quero|não concordo|nao concordo|não|nao|n|no|nunca|jamais|"
    r"de jeito nenhum|negativo"
)

SCHEDULE_PATTERN = (
    r"marcar|agendar|reservar|quero.*marcar|quero.*agendar|disponibilidade|horário|horarios|"
    r"livre|tem vaga|tem horário|tem horario|disponível|disponivel"
)
RESCHEDULE_PATTERN = (
    r"remarcar|reagendar|alterar|mudar|modificar|trocar|remarcação|remarcacao|reagendamento|"
    r"alteração|alteracao|mudança|mudanca"
)
CANCEL_PATTERN = (
    r"cancelar|desmarcar|cancela|desmarca|cancelamento|desistir|não quero mais|nao quero mais|"
    r"não posso|nao posso"
)
LIST_DIRECT_PATTERN = (
    r"listar|mostrar|exibir|quais são|quais sao|ver meus|ver os|meus agendamentos|meus horários|"
    r"meus horarios|minhas reservas|consultar"
)
LIST_QUESTION_PATTERN = (
    r"(?:quero saber|que dia|qual dia|quando|qual data|em que data|me informa|me lembra|me diz|"
    r"marcad[oa]|marquei|agendei|marqu?ou|agendou)[\s\S]*"
    r"(?:ensaio|foto|sessão|sessao|agendamento|horário|horario|reserva)"
)
LIST_VARIANT_PATTERN = (
    r"qual.*dia|que.*dia|quando.*é|quando.*será|quando.*vai.*ser|meu.*ensaio.*quando|ensaio.*quando|"
    r"data.*do.*ensaio|dia.*da.*reserva|horário.*marcado|horario.*marcado|meu.*horário|meu.*horario|"
    r"minha.*reserva|minha.*sessão|minha.*sessao"
)
LIST_EXISTING_PATTERN = (
    r"tenho.*horário|tenho.*horario|tenho.*agendamento|tenho.*ensaio|tem.*algum.*horário|"
    r"tem.*algum.*horario|algum.*horário.*marcado|algum.*horario.*marcado|já.*marcado|ja.*marcado|"
    r"confirmado|agendado"
)
LIST_BARE_PATTERN = r"horários|horarios|agendamentos|reservas|ensaio|ensaios|sessões|sessoes"
CONFUSION_PATTERN = (
    r"não entendi|nao entendi|confuso|confusa|não entendo|nao entendo|não é isso|nao e isso|"
    r"errado|errada|está errado|esta errado|erro|não funciona|nao funciona"
)

MORNING_PATTERN = re.compile(r"manhã|manha|matutino", re.IGNORECASE)
AFTERNOON_PATTERN = re.compile(r"tarde|vespertino", re.IGNORECASE)

# Evaluated in order, first match wins.
INTENT_RULES: list[tuple[Callable[[str], bool], Intent, float]] = [
    (_whole(GREETING_PATTERN), Intent.GREETING, 0.95),
    (_whole(THANKS_PATTERN), Intent.THANKS, 0.9),
    (_whole(FAREWELL_PATTERN), Intent.FAREWELL, 0.9),
    (_whole(CONFIRMATION_PATTERN), Intent.CONFIRMATION, 0.95),
    (_whole(REJECTION_PATTERN), Intent.REJECTION, 0.95),
    (_contains(SCHEDULE_PATTERN), Intent.SCHEDULE, 0.8),
    (_contains(RESCHEDULE_PATTERN), Intent.RESCHEDULE, 0.85),
    (_contains(CANCEL_PATTERN), Intent.CANCEL, 0.85),
    (_contains(LIST_DIRECT_PATTERN), Intent.LIST, 0.95),
    (_contains(LIST_QUESTION_PATTERN), Intent.LIST, 0.95),
    (_contains(LIST_VARIANT_PATTERN), Intent.LIST, 0.9),
    (_contains(LIST_EXISTING_PATTERN), Intent.LIST, 0.9),
    (_whole(LIST_BARE_PATTERN), Intent.LIST, 0.85),
    (_contains(CONFUSION_PATTERN), Intent.CONFUSION, 0.7),
]


def _schedule_context(text: str) -> dict[str, Any]:
    if MORNING_PATTERN.search(text):
        return {"period": "morning"}
    if AFTERNOON_PATTERN.search(text):
        return {"period": "afternoon"}
    return {}


def classify_intent(text: str | None) -> IntentResult:
    """Rule-based intent detection over the raw message text."""
    if not text:
        return IntentResult()

    normalized = text.strip().lower()
    for predicate, intent, confidence in INTENT_RULES:
        if predicate(normalized):
            context = _schedule_context(normalized) if intent == Intent.SCHEDULE else {}
            return IntentResult(intent=intent, confidence=confidence, context=context)
    return IntentResult()


CONFIRMATION_PROMPT = """Analise a seguinte mensagem e determine se é uma resposta:
1. POSITIVA (confirmação, aceitação, concordância)
2. NEGATIVA (rejeição, cancelamento, recusa)
3. NEUTRA (não é clara se é positiva ou negativa)

Mensagem: "{message}"

Responda APENAS com um JSON no formato:
{{
  "type": "POSITIVE" | "NEGATIVE" | "NEUTRAL",
  "confidence": 0.0-1.0,
  "reasoning": "breve explicação"
}}

Exemplos de respostas POSITIVAS: sim, beleza, fechado, ok, confirmo, perfeito, pode ser, claro, tá bom, confirma aí, isso mesmo, exato, combinado, aceito, concordo, certeza, é isso aí, vai dar certo, maravilha, ótimo, legal, top, massa, demais, valeu, show, bacana, etc.

Exemplos de respostas NEGATIVAS: não, nao, cancelar, cancela, não quero, deixa pra lá, mudei de ideia, esquece, recuso, nego, jamais, nunca, de jeito nenhum, nem pensar, etc.

Considere variações de escrita, gírias brasileiras, emojis e contexto."""

CONFIRMATION_TYPES = {
    "POSITIVE": Intent.CONFIRMATION,
    "NEGATIVE": Intent.REJECTION,
}

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def parse_confirmation_payload(content: str) -> dict[str, Any]:
    """Parse the classifier JSON, tolerating markdown code fences."""
    cleaned = _FENCE_RE.sub("", (content or "").strip())
    data = json.loads(cleaned)
    if not isinstance(data, dict) or "type" not in data:
        raise ValueError(f"Unexpected confirmation payload: {content!r}")
    return data


def _keyword_confirmation(text: str) -> IntentResult:
    basic = classify_intent(text)
    if basic.intent in (Intent.CONFIRMATION, Intent.REJECTION) and basic.confidence >= ACT_DIRECTLY_CONFIDENCE:
        return basic
    return IntentResult(intent=Intent.CONFUSION, confidence=0.0, reasoning="keyword fallback inconclusive")


async def classify_confirmation(
    text: str,
    llm: LLMProvider | None,
    config: Settings = default_settings,
) -> IntentResult:
    """Decide whether a reply is a yes, a no, or neither.

    The language model is the primary judge. Any failure (call error, timeout,
    unparsable answer) falls back to the keyword rules, accepted only at the
    stricter confidence bar.
    """
    if llm is None:
        return _keyword_confirmation(text)

    messages = [{"role": "user", "content": CONFIRMATION_PROMPT.format(message=text)}]
    try:
        response = await asyncio.wait_for(
            asyncio.to_thread(
                llm.generate,
                messages,
                config.openai_fast_model,
                0.1,
                150,
            ),
            timeout=config.confirmation_timeout_seconds_llm,
        )
        payload = parse_confirmation_payload(response.content)
        intent = CONFIRMATION_TYPES.get(str(payload.get("type", "")).upper(), Intent.CONFUSION)
        confidence = float(payload.get("confidence") or 0.0)
        return IntentResult(
            intent=intent,
            confidence=max(0.0, min(confidence, 1.0)),
            reasoning=payload.get("reasoning"),
            ai_analysis=True,
        )
    except Exception as e:
        logger.warning(
            "Confirmation classifier failed, using keyword fallback",
            extra={"context": {"error": str(e)}},
        )
        return _keyword_confirmation(text)
