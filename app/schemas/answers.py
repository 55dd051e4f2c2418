# app/schemas/answers.py

from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class TextAnswer(BaseModel):
    kind: Literal["text"] = "text"
    value: str


class ChoiceAnswer(BaseModel):
    kind: Literal["choice"] = "choice"
    value: str


class MultiChoiceAnswer(BaseModel):
    kind: Literal["multi_choice"] = "multi_choice"
    values: List[str] = Field(default_factory=list)


class NumberAnswer(BaseModel):
    kind: Literal["number"] = "number"
    value: float


class RatingAnswer(BaseModel):
    kind: Literal["rating"] = "rating"
    value: int


Answer = Annotated[
    Union[TextAnswer, ChoiceAnswer, MultiChoiceAnswer, NumberAnswer, RatingAnswer],
    Field(discriminator="kind"),
]


class AnswerPayload(BaseModel):
    """Body of PUT /sessions/{id}/answers/{question_id}. ``answer=None`` clears."""
    answer: Optional[Answer] = None


def is_answered(answer: Optional[Any]) -> bool:
    """
    Answered unless missing, blank text or an empty selection.

    Accepts both tagged answers and raw values so stored answer maps of
    either shape are judged the same way.
    """
    if answer is None:
        return False

    if isinstance(answer, (TextAnswer, ChoiceAnswer)):
        return answer.value.strip() != ""
    if isinstance(answer, MultiChoiceAnswer):
        return len(answer.values) > 0
    if isinstance(answer, (NumberAnswer, RatingAnswer)):
        return True

    if isinstance(answer, str):
        return answer.strip() != ""
    if isinstance(answer, (list, tuple, set, dict)):
        return len(answer) > 0
    return True


def answer_value(answer: Optional[Any]) -> Any:
    """Plain value carried by a tagged answer (list for multi-choice)."""
    if answer is None:
        return None
    if isinstance(answer, MultiChoiceAnswer):
        return list(answer.values)
    if isinstance(answer, (TextAnswer, ChoiceAnswer, NumberAnswer, RatingAnswer)):
        return answer.value
    return answer
