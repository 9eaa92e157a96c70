from __future__ import annotations

import logging
import re
import time
from collections import Counter
from dataclasses import dataclass, field

from ..config import settings
from ..errors import UploadError, ValidationError
from ..models import (
    AnswerState,
    FormRecord,
    Question,
    StatusSummary,
    SubmittedAnswer,
    Teacher,
    Verdict,
    VerdictStatus,
)
from ..repositories import create_plan
from ..storage import BlobStore
from .evaluator import AnswerEvaluator, evaluate_with_fallback, needs_reevaluation
from .pdf_encoder import encode

log = logging.getLogger(__name__)


class FormSession:
    """Answers in progress for one teacher on one form. Discarded on submit or form change."""

    def __init__(self, form: FormRecord, teacher_uid: str) -> None:
        self.form = form
        self.teacher_uid = teacher_uid
        self._questions = {question.id: question for question in form.questions}
        self.answers: dict[str, AnswerState] = {}

    @property
    def form_id(self) -> str:
        return self.form.id

    def matches(self, form: FormRecord) -> bool:
        return self.form.id == form.id and self.form.updated_at == form.updated_at

    def question(self, question_id: str) -> Question:
        try:
            return self._questions[question_id]
        except KeyError:
            raise ValidationError(f"Question inconnue pour ce formulaire: {question_id}") from None

    def answer(self, question_id: str) -> AnswerState:
        self.question(question_id)
        return self.answers.get(question_id) or AnswerState()

    def set_response(self, question_id: str, response: str) -> AnswerState:
        self.question(question_id)
        state = AnswerState(response=response)
        self.answers[question_id] = state
        return state

    def set_verdict(self, question_id: str, verdict: Verdict) -> None:
        state = self.answer(question_id)
        self.answers[question_id] = AnswerState(response=state.response, verdict=verdict)

    def commit_verdict(self, question_id: str, evaluated_response: str, verdict: Verdict) -> bool:
        """Store a verdict only if the answer still holds the text that was evaluated."""
        if self.answer(question_id).response != evaluated_response:
            return False
        self.answers[question_id] = AnswerState(response=evaluated_response, verdict=verdict)
        return True

    @property
    def progress(self) -> int:
        questions = self.form.questions
        if not questions:
            return 0
        answered = sum(1 for question in questions if self.answer(question.id).response.strip())
        return round(answered / len(questions) * 100)

    def clear(self) -> None:
        self.answers = {}


class SessionRegistry:
    def __init__(self) -> None:
        self._sessions: dict[str, FormSession] = {}

    def session_for(self, teacher_uid: str, form: FormRecord) -> FormSession:
        session = self._sessions.get(teacher_uid)
        if session is None or not session.matches(form):
            session = FormSession(form, teacher_uid)
            self._sessions[teacher_uid] = session
        return session

    def discard(self, teacher_uid: str) -> None:
        self._sessions.pop(teacher_uid, None)


@dataclass
class SubmissionResult:
    plan_id: str
    pdf_url: str
    answers: list[SubmittedAnswer]
    summary: StatusSummary
    notices: list[str] = field(default_factory=list)


async def analyze_question(
    session: FormSession, question_id: str, evaluator: AnswerEvaluator
) -> tuple[Verdict, str | None]:
    question = session.question(question_id)
    state = session.answer(question_id)
    if not state.response.strip():
        raise ValidationError("Veuillez écrire votre réponse avant d'analyser.")

    evaluated = state.response
    verdict, notice = await evaluate_with_fallback(evaluator, question.text, question.rule, evaluated)
    if not session.commit_verdict(question_id, evaluated, verdict):
        log.info("answer %s changed during evaluation, verdict dropped", question_id)
    return verdict, notice


def summarize(answers: list[SubmittedAnswer]) -> StatusSummary:
    counts = Counter(answer.status for answer in answers)
    return StatusSummary(
        conforme=counts[VerdictStatus.conforme],
        ameliorer=counts[VerdictStatus.a_ameliorer],
        non_conforme=counts[VerdictStatus.non_conforme],
    )


def build_plan_lines(form: FormRecord, teacher: Teacher, answers: list[SubmittedAnswer]) -> list[str]:
    lines = [
        f"Plan : {form.name or 'Sans nom'}",
        f"Enseignant : {teacher.display_name}",
        f"Session : {form.session or 'N/D'}",
        "",
    ]
    for index, answer in enumerate(answers, start=1):
        lines.append(f"{index}. {answer.prompt}")
        lines.append(f"Réponse : {answer.response}")
        lines.append(f"Validation : {answer.status.value} – {answer.feedback or 'N/A'}")
        lines.append("")
    return lines


def sanitize_filename(value: str) -> str:
    slug = re.sub(r"\s+", "-", value.lower())
    return re.sub(r"[^a-z0-9_-]", "", slug)


def plan_storage_key(teacher_uid: str, form_name: str) -> str:
    millis = time.time_ns() // 1_000_000
    owner = sanitize_filename(teacher_uid) or "anonyme"
    return f"plans/{owner}/{millis}-{sanitize_filename(form_name or 'plan') or 'plan'}.pdf"


def _check_complete(session: FormSession, min_questions: int) -> None:
    questions = session.form.questions
    if len(questions) < min_questions:
        raise ValidationError(
            f"Le formulaire actif doit contenir au moins {min_questions} questions."
        )
    missing = [question.id for question in questions if not session.answer(question.id).response.strip()]
    if missing:
        raise ValidationError("Veuillez répondre à toutes les questions du formulaire.")


async def _finalize_answers(
    session: FormSession, evaluator: AnswerEvaluator
) -> tuple[list[SubmittedAnswer], list[str]]:
    answers: list[SubmittedAnswer] = []
    notices: list[str] = []
    # Sequential, in question order; each answer falls back on its own.
    for question in session.form.questions:
        state = session.answer(question.id)
        evaluated = state.response
        response = evaluated.strip()
        verdict = state.verdict
        if needs_reevaluation(verdict, evaluator):
            verdict, notice = await evaluate_with_fallback(evaluator, question.text, question.rule, response)
            session.commit_verdict(question.id, evaluated, verdict)
            if notice:
                notices.append(notice)
        answers.append(
            SubmittedAnswer(
                question_id=question.id,
                prompt=question.text,
                rule=question.rule,
                response=response,
                status=verdict.status,
                feedback=verdict.feedback,
                highlights=list(verdict.highlights),
                engine=verdict.engine,
                model=verdict.model,
            )
        )
    return answers, notices


async def submit_plan(
    session: FormSession,
    teacher: Teacher,
    evaluator: AnswerEvaluator,
    blob_store: BlobStore,
    min_questions: int | None = None,
) -> SubmissionResult:
    _check_complete(session, settings.min_questions if min_questions is None else min_questions)

    answers, notices = await _finalize_answers(session, evaluator)
    summary = summarize(answers)
    document = encode(build_plan_lines(session.form, teacher, answers))

    key = plan_storage_key(teacher.uid, session.form.name)
    pdf_url = blob_store.put(key, document)

    try:
        plan_id = create_plan(
            form=session.form.model_dump(),
            answers=[answer.model_dump(mode="json") for answer in answers],
            summary=summary.model_dump(),
            teacher_uid=teacher.uid,
            teacher_email=teacher.email,
            teacher_name=teacher.name or "Enseignant",
            pdf_url=pdf_url,
        )
    except Exception as exc:
        log.exception("could not record plan for %s", teacher.uid)
        blob_store.delete(key)
        raise UploadError("Impossible d'enregistrer le plan.") from exc

    log.info(
        "plan %s submitted by %s (%d conforme, %d à améliorer, %d non conforme)",
        plan_id,
        teacher.uid,
        summary.conforme,
        summary.ameliorer,
        summary.non_conforme,
    )
    session.clear()
    return SubmissionResult(plan_id=plan_id, pdf_url=pdf_url, answers=answers, summary=summary, notices=notices)
