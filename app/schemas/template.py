# app/schemas/template.py

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class QuestionKind(str, Enum):
    SHORT_TEXT = "short_text"
    LONG_TEXT = "long_text"
    SINGLE_CHOICE = "single_choice"
    MULTI_CHOICE = "multi_choice"
    NUMERIC = "numeric"
    RATING = "rating"
    HEADING = "heading"


# Type names written by the older form builder
LEGACY_KIND_ALIASES = {
    "short": QuestionKind.SHORT_TEXT,
    "long": QuestionKind.LONG_TEXT,
    "radio": QuestionKind.SINGLE_CHOICE,
    "checkbox": QuestionKind.MULTI_CHOICE,
    "number": QuestionKind.NUMERIC,
}

CLOSED_FORM_KINDS = frozenset({
    QuestionKind.SINGLE_CHOICE,
    QuestionKind.MULTI_CHOICE,
    QuestionKind.NUMERIC,
    QuestionKind.RATING,
})

# Answer kind each question kind accepts
ANSWER_KIND_FOR = {
    QuestionKind.SHORT_TEXT: "text",
    QuestionKind.LONG_TEXT: "text",
    QuestionKind.SINGLE_CHOICE: "choice",
    QuestionKind.MULTI_CHOICE: "multi_choice",
    QuestionKind.NUMERIC: "number",
    QuestionKind.RATING: "rating",
}


class TemplateQuestion(BaseModel):
    id: str = Field(..., min_length=1)
    kind: QuestionKind = Field(..., alias="type")
    label: str = ""
    required: bool = False
    description: Optional[str] = None
    options: List[str] = Field(default_factory=list)
    correct_answer: Optional[Any] = None
    points: float = 1
    time_limit_seconds: Optional[int] = None

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("kind", mode="before")
    @classmethod
    def _accept_legacy_kinds(cls, v):
        if isinstance(v, str) and v in LEGACY_KIND_ALIASES:
            return LEGACY_KIND_ALIASES[v]
        return v

    @field_validator("points", mode="before")
    @classmethod
    def _default_points(cls, v):
        return 1 if v is None else v

    @property
    def answer_kind(self) -> Optional[str]:
        return ANSWER_KIND_FOR.get(self.kind)

    def public_view(self) -> Dict[str, Any]:
        """What the test-taker may see: no canonical answer."""
        return {
            "id": self.id,
            "type": self.kind.value,
            "label": self.label,
            "description": self.description,
            "required": self.required,
            "options": self.options if self.kind in (QuestionKind.SINGLE_CHOICE, QuestionKind.MULTI_CHOICE) else None,
            "time_limit_seconds": self.time_limit_seconds,
        }


def parse_questions(fields: Any) -> List[TemplateQuestion]:
    """
    Parse a template's ``fields`` list into the question sequence a session
    walks. Headings are dropped. Raises ``ValueError`` (pydantic's
    ``ValidationError`` included) on malformed input.
    """
    if not isinstance(fields, list):
        raise ValueError("Template fields must be a list")

    questions = [TemplateQuestion.model_validate(f) for f in fields]

    ids = [q.id for q in questions]
    if len(set(ids)) != len(ids):
        raise ValueError("Template question ids must be unique")

    return [q for q in questions if q.kind != QuestionKind.HEADING]
