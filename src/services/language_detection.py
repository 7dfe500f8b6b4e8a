"""
Language Detection.

Classifies a customer reply as English or Spanish with a closed-choice
prompt. Detection never fails the turn: any error or unexpected answer
falls back to English.
"""

from __future__ import annotations

from src.logging_config import get_logger
from src.schemas.survey import Language
from src.services.llm_client import TextGenerator

logger = get_logger(__name__)

DEFAULT_LANGUAGE: Language = "English"

DETECTION_PROMPT = (
    'Determine if the following text is in English or Spanish. '
    'Only respond with "English" or "Spanish".\n\n'
    'Text: "{text}"'
)


async def detect_language(llm: TextGenerator, text: str) -> Language:
    """Return "Spanish" when the model says so, otherwise "English"."""
    try:
        answer = await llm.generate(DETECTION_PROMPT.replace("{text}", text), temperature=0.0)
    except Exception as e:
        logger.warning("language_detection_failed", error=str(e))
        return DEFAULT_LANGUAGE

    answer = (answer or "").strip()
    if "Spanish" in answer or "Español" in answer:
        return "Spanish"
    return DEFAULT_LANGUAGE
