"""
Survey Result Extraction.

Sends a finished survey transcript to the language model with a fixed
instruction and parses the single JSON object it returns into a
validated ``SurveyResult``. Parse failures and schema violations are
raised to the caller; nothing is coerced into a partial result.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import ValidationError

from src.config import get_settings
from src.errors import ExtractionFailed, ExtractionSchemaInvalid
from src.logging_config import get_logger
from src.schemas.survey import CALLBACK_RATING_THRESHOLD, SurveyResult
from src.services.llm_client import TextGenerator

logger = get_logger(__name__)


# Instruction block sent ahead of the transcript. The JSON shape below is
# the contract SurveyResult validates against.
EXTRACTION_INSTRUCTIONS = """You are analyzing a customer satisfaction survey conversation for {dealership}, an automotive service department. The conversation took place over SMS after the customer's recent service visit.

Extract the following from the conversation:

1. RATINGS: integers from 0 to 10 for
   - overall_satisfaction: overall satisfaction with the service
   - workmanship_quality: quality of the work done on the vehicle
   - service_timeliness: timeliness of service completion
   - staff_friendliness: friendliness of the staff

2. FOLLOW-UP ITEMS: specific issues the customer raised, each as a short description, grouped as
   - billing_disputes: billing concerns or disputes
   - mechanical_issues: mechanical problems needing further attention
   - warranty_questions: warranty questions or clarification requests
   - service_logistics: shuttle service, wait times, scheduling and similar complaints
   - safety_concerns: anything affecting the safety of the vehicle or its occupants
   Use an empty list for any category the customer did not raise.

3. POSITIVE REMARKS: compliments about staff, as the employee's name (or a description if no name was given) and the comment.

4. PREFERRED LANGUAGE: "English" or "Spanish", whichever the customer wrote in.

5. CALLBACK FLAG: set "callback_needed" to true if ANY of these hold:
   - any rating is {threshold} or lower
   - any billing dispute was mentioned
   - any safety concern was mentioned
   - any warranty question was asked
   Otherwise set it to false."""

EXTRACTION_OUTPUT_FORMAT = """Respond with ONLY a single JSON object in exactly this format:
{
  "ratings": {
    "overall_satisfaction": <0-10>,
    "workmanship_quality": <0-10>,
    "service_timeliness": <0-10>,
    "staff_friendliness": <0-10>
  },
  "follow_up_items": {
    "billing_disputes": [<specific issues>],
    "mechanical_issues": [<specific issues>],
    "warranty_questions": [<specific questions>],
    "service_logistics": [<specific complaints>],
    "safety_concerns": [<specific concerns>]
  },
  "positive_remarks": [
    {"employee": "<name or description>", "comment": "<compliment>"}
  ],
  "preferred_language": "<English or Spanish>",
  "callback_needed": <true or false>
}"""


def build_extraction_prompt(transcript: str, dealership: str | None = None) -> str:
    instructions = (
        EXTRACTION_INSTRUCTIONS
        .replace("{dealership}", dealership or get_settings().dealership_name)
        .replace("{threshold}", str(CALLBACK_RATING_THRESHOLD))
    )
    return (
        f"{instructions}\n\n"
        f"Customer survey transcript:\n{transcript}\n\n"
        f"{EXTRACTION_OUTPUT_FORMAT}"
    )


def find_json_object(text: str) -> dict[str, Any]:
    """
    Parse the span from the first ``{`` to the last ``}`` of ``text``.

    Raises:
        ExtractionFailed: no such span, or it is not valid JSON.
    """
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise ExtractionFailed("Could not find a JSON object in the model response")

    try:
        parsed = json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        raise ExtractionFailed(f"Model response JSON is not parsable: {e}") from e

    if not isinstance(parsed, dict):
        raise ExtractionFailed("Model response JSON is not an object")
    return parsed


class SurveyExtractor:
    """Turns a flattened transcript into a SurveyResult with one model call."""

    def __init__(self, llm: TextGenerator, dealership: str | None = None) -> None:
        self.llm = llm
        self.dealership = dealership

    async def extract(self, transcript: str) -> SurveyResult:
        """
        Run extraction on a ``"speaker: text"`` transcript.

        Raises:
            ExtractionFailed: backend error or no parsable JSON object.
            ExtractionSchemaInvalid: JSON does not match the result schema.
        """
        logger.info("extraction_started", transcript_length=len(transcript))

        prompt = build_extraction_prompt(transcript, self.dealership)
        try:
            reply = await self.llm.generate(prompt, temperature=0.1)
        except Exception as e:
            logger.error("extraction_llm_error", error=str(e))
            raise ExtractionFailed(f"Failed to process survey response: {e}") from e

        data = find_json_object(reply)

        try:
            result = SurveyResult.model_validate(data)
        except ValidationError as e:
            logger.error("extraction_schema_invalid", errors=e.error_count())
            raise ExtractionSchemaInvalid(str(e)) from e

        # The model does not always apply the callback rule; never let it under-report.
        if result.callback_required() and not result.callback_needed:
            logger.warning("callback_flag_overridden", ratings=result.ratings.as_list())
            result = result.model_copy(update={"callback_needed": True})

        logger.info(
            "extraction_complete",
            callback_needed=result.callback_needed,
            language=result.preferred_language,
            follow_up_count=sum(len(items) for _, items in result.follow_up_items.by_category()),
            remark_count=len(result.positive_remarks),
        )
        return result
