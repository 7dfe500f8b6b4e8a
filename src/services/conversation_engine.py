"""
Conversation Engine for the Service Satisfaction Survey.

Drives the fixed SMS question sequence. The survey phase is never
stored: it is derived from turn counts by ``phase_of``, so the engine
is a pure function of (conversation, inbound text) plus its injected
language-model collaborators.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from src.config import get_settings
from src.logging_config import get_logger
from src.schemas.survey import ConversationPhase, Language, Speaker, SurveyResult, Turn
from src.services.language_detection import detect_language
from src.services.llm_client import TextGenerator
from src.services.survey_extraction import SurveyExtractor

logger = get_logger(__name__)

# Phase thresholds
MAX_ASSISTANT_TURNS = 6
MAX_CUSTOMER_TURNS = 6

_PHASE_BY_ASSISTANT_TURNS: dict[int, ConversationPhase] = {
    1: ConversationPhase.OVERALL_SATISFACTION,
    2: ConversationPhase.WORKMANSHIP_QUALITY,
    3: ConversationPhase.SERVICE_TIMELINESS,
    4: ConversationPhase.STAFF_FRIENDLINESS,
    5: ConversationPhase.FOLLOW_UP,
    6: ConversationPhase.STAFF_RECOGNITION,
}

SEED_GREETING = (
    "Hello from {dealership}! We would like your feedback on your recent service visit. "
    "On a scale of 0-10, how would you rate your overall satisfaction with our service?"
)

# Question sent after the customer answers the given phase
SCRIPTED_QUESTIONS: dict[ConversationPhase, dict[str, str]] = {
    ConversationPhase.OVERALL_SATISFACTION: {
        "English": "How would you rate the quality of workmanship on your vehicle? (0-10)",
        "Spanish": "¿Cómo calificaría la calidad del trabajo realizado en su vehículo? (0-10)",
    },
    ConversationPhase.WORKMANSHIP_QUALITY: {
        "English": "How would you rate the timeliness of your service completion? (0-10)",
        "Spanish": "¿Cómo calificaría la puntualidad del servicio? (0-10)",
    },
    ConversationPhase.SERVICE_TIMELINESS: {
        "English": "How would you rate the friendliness of our staff? (0-10)",
        "Spanish": "¿Cómo calificaría la amabilidad de nuestro personal? (0-10)",
    },
    ConversationPhase.STAFF_FRIENDLINESS: {
        "English": (
            "Is there anything specific about your visit you would like us to address? "
            "(e.g., billing issues, mechanical problems, warranty questions, etc.)"
        ),
        "Spanish": (
            "¿Hay algo específico sobre su visita que le gustaría que abordemos? "
            "(Por ejemplo, problemas de facturación, problemas mecánicos, preguntas de garantía, etc.)"
        ),
    },
    ConversationPhase.FOLLOW_UP: {
        "English": "Would you like to mention any staff member who was particularly helpful?",
        "Spanish": "¿Le gustaría mencionar a algún miembro del personal que fue particularmente útil?",
    },
}

APOLOGY_MESSAGES: dict[str, str] = {
    "English": "I apologize, I am experiencing technical difficulties. Can we continue with the survey?",
    "Spanish": "Lo siento, estoy teniendo problemas técnicos. ¿Podemos continuar con la encuesta?",
}

THANK_YOU_MESSAGES: dict[str, str] = {
    "English": "Thank you for completing our survey. Your feedback is very important to us. Have a great day!",
    "Spanish": (
        "Gracias por completar nuestra encuesta. Su opinión es muy importante para nosotros. "
        "¡Que tenga un buen día!"
    ),
}

# General prompt for replies the script does not cover
SURVEY_PROMPT = """You are a friendly automotive service survey assistant for {dealership}, texting a customer about their recent service visit.

You have already collected ratings (0-10) for overall satisfaction, quality of workmanship, timeliness and staff friendliness, and asked about any issues to address and any staff worth recognizing.

Reply with ONE short SMS message (under 300 characters, no markdown) that acknowledges what the customer just said and, if appropriate, asks whether there is anything else they would like to share about their visit. Do not ask for any rating again."""

_NEXT_STEP: dict[ConversationPhase, ConversationPhase] = {
    ConversationPhase.OVERALL_SATISFACTION: ConversationPhase.WORKMANSHIP_QUALITY,
    ConversationPhase.WORKMANSHIP_QUALITY: ConversationPhase.SERVICE_TIMELINESS,
    ConversationPhase.SERVICE_TIMELINESS: ConversationPhase.STAFF_FRIENDLINESS,
    ConversationPhase.STAFF_FRIENDLINESS: ConversationPhase.FOLLOW_UP,
    ConversationPhase.FOLLOW_UP: ConversationPhase.STAFF_RECOGNITION,
    ConversationPhase.STAFF_RECOGNITION: ConversationPhase.ADDITIONAL_INFO,
}


def phase_of(turns: Sequence[Turn]) -> ConversationPhase:
    """
    Derive the survey phase from turn counts alone.

    The customer-turn ceiling and the assistant-turn limit end the survey;
    otherwise the number of questions asked so far selects the phase.
    """
    assistant_turns = sum(1 for t in turns if t.speaker == Speaker.ASSISTANT)
    customer_turns = sum(1 for t in turns if t.speaker == Speaker.CUSTOMER)

    if assistant_turns > MAX_ASSISTANT_TURNS or customer_turns >= MAX_CUSTOMER_TURNS:
        return ConversationPhase.COMPLETE
    return _PHASE_BY_ASSISTANT_TURNS.get(assistant_turns, ConversationPhase.ADDITIONAL_INFO)


def next_step(phase: ConversationPhase) -> ConversationPhase:
    """The step an outbound message sent during ``phase`` asks about."""
    return _NEXT_STEP.get(phase, ConversationPhase.COMPLETE)


def seed_greeting(dealership: str | None = None) -> str:
    return SEED_GREETING.replace("{dealership}", dealership or get_settings().dealership_name)


def seed_conversation(dealership: str | None = None) -> list[Turn]:
    """A new conversation: the greeting and first rating question."""
    return [Turn(speaker=Speaker.ASSISTANT, text=seed_greeting(dealership))]


def scripted_question(phase: ConversationPhase, language: Language) -> str | None:
    questions = SCRIPTED_QUESTIONS.get(phase)
    if questions is None:
        return None
    return questions.get(language, questions["English"])


def thank_you_message(language: Language) -> str:
    return THANK_YOU_MESSAGES.get(language, THANK_YOU_MESSAGES["English"])


def format_transcript(turns: Sequence[Turn]) -> str:
    """Flatten turns to newline-joined ``speaker: text`` lines."""
    return "\n".join(f"{t.speaker.value}: {t.text}" for t in turns)


@dataclass
class TurnOutcome:
    """Result of advancing a conversation by one inbound message."""
    conversation: list[Turn]
    outbound_text: Optional[str]
    terminal: bool
    phase: ConversationPhase
    language: Language
    result: Optional[SurveyResult] = None


class ConversationEngine:
    """
    Advances a survey conversation by one customer message.

    Holds no per-conversation state; the caller loads and persists the
    conversation around each call to ``advance``.
    """

    def __init__(
        self,
        llm: TextGenerator,
        extractor: SurveyExtractor | None = None,
        dealership: str | None = None,
    ) -> None:
        self.llm = llm
        self.extractor = extractor or SurveyExtractor(llm, dealership)
        self.dealership = dealership or get_settings().dealership_name

    async def advance(self, inbound_text: str, conversation: Sequence[Turn]) -> TurnOutcome:
        """
        Append the customer's reply and pick what happens next.

        Returns a terminal outcome carrying the extracted ``SurveyResult``
        once the conversation is complete; otherwise the outcome carries
        the next outbound message, already appended as an assistant turn.

        Raises:
            ExtractionError: only on the terminal turn, when the result
                cannot be extracted.
        """
        turns = list(conversation) if conversation else seed_conversation(self.dealership)
        turns.append(Turn(speaker=Speaker.CUSTOMER, text=inbound_text))

        language = await detect_language(self.llm, inbound_text)
        phase = phase_of(turns)

        logger.info("conversation_advanced", phase=phase.value, language=language, turns=len(turns))

        if phase == ConversationPhase.COMPLETE:
            result = await self.extractor.extract(format_transcript(turns))
            return TurnOutcome(
                conversation=turns,
                outbound_text=None,
                terminal=True,
                phase=phase,
                language=language,
                result=result,
            )

        outbound = scripted_question(phase, language)
        if outbound is None:
            outbound = await self._generate_reply(turns, language)

        turns.append(Turn(speaker=Speaker.ASSISTANT, text=outbound))
        return TurnOutcome(
            conversation=turns,
            outbound_text=outbound,
            terminal=False,
            phase=phase,
            language=language,
        )

    async def _generate_reply(self, turns: Sequence[Turn], language: Language) -> str:
        """Free-form reply for phases without scripted text; apologizes on failure."""
        prompt = (
            f"{SURVEY_PROMPT.replace('{dealership}', self.dealership)}\n\n"
            f"Conversation so far:\n{format_transcript(turns)}\n\n"
            f"Please respond in {language} to continue the survey."
        )
        try:
            return (await self.llm.generate(prompt)).strip() or APOLOGY_MESSAGES[language]
        except Exception as e:
            logger.error("reply_generation_error", language=language, error=str(e))
            return APOLOGY_MESSAGES[language]
