"""
Data models for survey conversations and extracted survey results.
"""

from enum import Enum
from typing import Annotated, Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr, field_validator

CALLBACK_RATING_THRESHOLD = 5

Rating = Annotated[StrictInt, Field(ge=0, le=10)]
Language = Literal["English", "Spanish"]


class Speaker(str, Enum):
    CUSTOMER = "customer"
    ASSISTANT = "assistant"


class Turn(BaseModel):
    """One utterance in a survey conversation."""
    speaker: Speaker
    text: str

    @field_validator("speaker", mode="before")
    @classmethod
    def _legacy_speaker(cls, value: Any) -> Any:
        # Older survey rows store assistant turns as "ai"
        if value == "ai":
            return Speaker.ASSISTANT
        return value


class ConversationPhase(str, Enum):
    """Position in the fixed survey question sequence, in order."""
    OVERALL_SATISFACTION = "overall_satisfaction"
    WORKMANSHIP_QUALITY = "workmanship_quality"
    SERVICE_TIMELINESS = "service_timeliness"
    STAFF_FRIENDLINESS = "staff_friendliness"
    FOLLOW_UP = "follow_up"
    STAFF_RECOGNITION = "staff_recognition"
    ADDITIONAL_INFO = "additional_info"
    COMPLETE = "complete"


class FollowUpCategory(str, Enum):
    """Issue type stored on follow-up item rows, keyed by result list name."""
    BILLING_DISPUTE = "billing_dispute"
    MECHANICAL_ISSUE = "mechanical_issue"
    WARRANTY_QUESTION = "warranty_question"
    SERVICE_LOGISTICS = "service_logistics"
    SAFETY_CONCERN = "safety_concern"


class Ratings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    overall_satisfaction: Rating
    workmanship_quality: Rating
    service_timeliness: Rating
    staff_friendliness: Rating

    def as_list(self) -> list[int]:
        return [
            self.overall_satisfaction,
            self.workmanship_quality,
            self.service_timeliness,
            self.staff_friendliness,
        ]


class FollowUpItems(BaseModel):
    model_config = ConfigDict(extra="ignore")

    billing_disputes: list[StrictStr]
    mechanical_issues: list[StrictStr]
    warranty_questions: list[StrictStr]
    service_logistics: list[StrictStr]
    safety_concerns: list[StrictStr]

    def by_category(self) -> list[tuple[FollowUpCategory, list[str]]]:
        return [
            (FollowUpCategory.BILLING_DISPUTE, self.billing_disputes),
            (FollowUpCategory.MECHANICAL_ISSUE, self.mechanical_issues),
            (FollowUpCategory.WARRANTY_QUESTION, self.warranty_questions),
            (FollowUpCategory.SERVICE_LOGISTICS, self.service_logistics),
            (FollowUpCategory.SAFETY_CONCERN, self.safety_concerns),
        ]


class PositiveRemark(BaseModel):
    model_config = ConfigDict(extra="ignore")

    employee: StrictStr
    comment: StrictStr


class SurveyResult(BaseModel):
    """Structured output of extraction, written once per conversation."""
    model_config = ConfigDict(extra="ignore")

    ratings: Ratings
    follow_up_items: FollowUpItems
    positive_remarks: list[PositiveRemark]
    preferred_language: Language
    callback_needed: StrictBool

    def callback_required(self) -> bool:
        """
        Whether the callback rule holds for this result.

        A human follow-up is needed when any rating is at or below the
        threshold, or any billing, safety or warranty item was raised.
        """
        if any(r <= CALLBACK_RATING_THRESHOLD for r in self.ratings.as_list()):
            return True
        items = self.follow_up_items
        return bool(items.billing_disputes or items.safety_concerns or items.warranty_questions)


class SurveyRecord(BaseModel):
    """The fields of a surveys row that inbound processing reads."""
    model_config = ConfigDict(extra="ignore")

    id: str
    service_visit_id: str
    survey_completed: Optional[bool] = False
    conversation: Optional[list[Turn]] = None
