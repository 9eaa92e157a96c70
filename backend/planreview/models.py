from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class VerdictStatus(str, Enum):
    conforme = "Conforme"
    a_ameliorer = "À améliorer"
    non_conforme = "Non conforme"


class EvaluationEngine(str, Enum):
    chatgpt = "chatgpt"
    heuristique = "heuristique"


class PlanStatus(str, Enum):
    soumis = "soumis"
    approuve = "approuve"
    corrections = "corrections"


class Verdict(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: VerdictStatus
    feedback: str
    highlights: list[str] = Field(default_factory=list)
    engine: EvaluationEngine
    model: str


class Question(BaseModel):
    id: str = Field(min_length=1)
    text: str
    rule: str = ""


class QuestionInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str | None = None
    text: str = ""
    rule: str = ""


class FormInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = ""
    session: str = ""
    questions: list[QuestionInput] = Field(default_factory=list)
    is_active: bool = False


class FormRecord(BaseModel):
    id: str
    name: str
    session: str
    questions: list[Question]
    is_active: bool = False
    created_at: str
    updated_at: str


class FormListResponse(BaseModel):
    items: list[FormRecord]


class AnswerState(BaseModel):
    response: str = ""
    verdict: Verdict | None = None


class SubmittedAnswer(BaseModel):
    question_id: str
    prompt: str
    rule: str = ""
    response: str
    status: VerdictStatus
    feedback: str
    highlights: list[str] = Field(default_factory=list)
    engine: EvaluationEngine
    model: str


class StatusSummary(BaseModel):
    conforme: int = 0
    ameliorer: int = 0
    non_conforme: int = 0

    @property
    def total(self) -> int:
        return self.conforme + self.ameliorer + self.non_conforme


class Teacher(BaseModel):
    uid: str = Field(min_length=1)
    email: str = ""
    name: str = ""

    @property
    def display_name(self) -> str:
        return self.name or self.email


class PlanRecord(BaseModel):
    id: str
    form_id: str
    form_name: str
    session: str
    answers: list[SubmittedAnswer]
    summary: StatusSummary
    status: PlanStatus = PlanStatus.soumis
    teacher_uid: str
    teacher_email: str = ""
    teacher_name: str = ""
    pdf_url: str
    review_comment: str = ""
    reviewer_name: str | None = None
    created_at: str
    updated_at: str


class PlanListResponse(BaseModel):
    items: list[PlanRecord]


class DraftAnswerRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    response: str = ""


class DraftResponse(BaseModel):
    teacher_uid: str
    form_id: str
    progress: int = Field(ge=0, le=100)
    answers: dict[str, AnswerState]


class AnalyzeResponse(BaseModel):
    question_id: str
    verdict: Verdict
    notice: str | None = None


class SubmitRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    teacher_uid: str = Field(min_length=1)
    teacher_email: str = ""
    teacher_name: str = ""


class SubmitResponse(BaseModel):
    plan: PlanRecord
    notices: list[str] = Field(default_factory=list)


class ReviewRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: Literal["approuve", "corrections"]
    comment: str = ""
    reviewer_name: str | None = None


class HealthResponse(BaseModel):
    status: Literal["ok"]
    engine: EvaluationEngine
    min_questions: int
