from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request

from ..config import settings
from ..errors import UploadError, ValidationError
from ..models import (
    AnalyzeResponse,
    DraftAnswerRequest,
    DraftResponse,
    FormInput,
    FormListResponse,
    FormRecord,
    HealthResponse,
    PlanListResponse,
    PlanRecord,
    PlanStatus,
    ReviewRequest,
    SubmitRequest,
    SubmitResponse,
    Teacher,
)
from ..repositories import (
    create_form,
    delete_form,
    get_active_form,
    get_form,
    get_plan,
    list_forms,
    list_plans,
    new_question_id,
    review_plan,
    set_form_active,
    update_form,
)
from ..services.evaluator import AnswerEvaluator
from ..services.submission import FormSession, SessionRegistry, analyze_question, submit_plan
from ..storage import BlobStore

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["v1"])

SUBMIT_RETRY_MESSAGE = "Impossible de soumettre le plan, réessayez."


def _evaluator(request: Request) -> AnswerEvaluator:
    return request.app.state.evaluator


def _sessions(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def _blob_store(request: Request) -> BlobStore:
    return request.app.state.blob_store


def _normalize_form(payload: FormInput) -> tuple[str, str, list[dict[str, Any]]]:
    name = payload.name.strip()
    session = payload.session.strip()
    questions = [
        {
            "id": (item.id or "").strip() or new_question_id(),
            "text": item.text.strip(),
            "rule": item.rule.strip(),
        }
        for item in payload.questions
    ]
    if (
        not name
        or not session
        or len(questions) < settings.min_questions
        or not all(question["text"] for question in questions)
    ):
        raise HTTPException(
            status_code=400,
            detail=(
                "Veuillez compléter le nom, la session et au moins "
                f"{settings.min_questions} questions."
            ),
        )
    if len({question["id"] for question in questions}) != len(questions):
        raise HTTPException(status_code=400, detail="Chaque question doit avoir un identifiant unique.")
    return name, session, questions


def _require_form(form_id: str) -> FormRecord:
    record = get_form(form_id)
    if not record:
        raise HTTPException(status_code=404, detail="Form not found.")
    return FormRecord.model_validate(record)


def _active_session(request: Request, teacher_uid: str) -> FormSession:
    record = get_active_form()
    if not record:
        raise HTTPException(status_code=404, detail="Aucun formulaire actif n'est disponible.")
    return _sessions(request).session_for(teacher_uid, FormRecord.model_validate(record))


def _draft(session: FormSession) -> DraftResponse:
    return DraftResponse(
        teacher_uid=session.teacher_uid,
        form_id=session.form_id,
        progress=session.progress,
        answers=dict(session.answers),
    )


@router.get("/forms", response_model=FormListResponse)
async def forms() -> FormListResponse:
    return FormListResponse(items=list_forms())


@router.post("/forms", response_model=FormRecord)
async def add_form(payload: FormInput) -> FormRecord:
    name, session, questions = _normalize_form(payload)
    form_id = create_form(name=name, session=session, questions=questions)
    return _require_form(form_id)


@router.get("/forms/active", response_model=FormRecord)
async def active_form() -> FormRecord:
    record = get_active_form()
    if not record:
        raise HTTPException(status_code=404, detail="Aucun formulaire actif n'est disponible.")
    return FormRecord.model_validate(record)


@router.get("/forms/{form_id}", response_model=FormRecord)
async def form_detail(form_id: str) -> FormRecord:
    return _require_form(form_id)


@router.put("/forms/{form_id}", response_model=FormRecord)
async def edit_form(form_id: str, payload: FormInput) -> FormRecord:
    name, session, questions = _normalize_form(payload)
    if not update_form(form_id, name, session, questions, payload.is_active):
        raise HTTPException(status_code=404, detail="Form not found.")
    return _require_form(form_id)


@router.post("/forms/{form_id}/toggle-active", response_model=FormRecord)
async def toggle_form(form_id: str) -> FormRecord:
    current = _require_form(form_id)
    set_form_active(form_id, not current.is_active)
    return _require_form(form_id)


@router.delete("/forms/{form_id}", status_code=204)
async def remove_form(form_id: str) -> None:
    if not delete_form(form_id):
        raise HTTPException(status_code=404, detail="Form not found.")


@router.get("/drafts/{teacher_uid}", response_model=DraftResponse)
async def draft(request: Request, teacher_uid: str) -> DraftResponse:
    return _draft(_active_session(request, teacher_uid))


@router.put("/drafts/{teacher_uid}/answers/{question_id}", response_model=DraftResponse)
async def save_answer(
    request: Request, teacher_uid: str, question_id: str, payload: DraftAnswerRequest
) -> DraftResponse:
    session = _active_session(request, teacher_uid)
    try:
        session.set_response(question_id, payload.response)
    except ValidationError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _draft(session)


@router.post("/drafts/{teacher_uid}/answers/{question_id}/analyze", response_model=AnalyzeResponse)
async def analyze(request: Request, teacher_uid: str, question_id: str) -> AnalyzeResponse:
    session = _active_session(request, teacher_uid)
    try:
        session.question(question_id)
    except ValidationError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    try:
        verdict, notice = await analyze_question(session, question_id, _evaluator(request))
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return AnalyzeResponse(question_id=question_id, verdict=verdict, notice=notice)


@router.post("/plans", response_model=SubmitResponse)
async def submit(request: Request, payload: SubmitRequest) -> SubmitResponse:
    session = _active_session(request, payload.teacher_uid)
    teacher = Teacher(uid=payload.teacher_uid, email=payload.teacher_email, name=payload.teacher_name)
    try:
        result = await submit_plan(session, teacher, _evaluator(request), _blob_store(request))
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except UploadError as exc:
        log.error("submission failed for %s: %s", payload.teacher_uid, exc)
        raise HTTPException(status_code=502, detail=SUBMIT_RETRY_MESSAGE) from exc

    _sessions(request).discard(payload.teacher_uid)
    record = get_plan(result.plan_id)
    return SubmitResponse(plan=PlanRecord.model_validate(record), notices=result.notices)


@router.get("/plans", response_model=PlanListResponse)
async def plans(
    teacher: str | None = Query(default=None),
    status: PlanStatus | None = Query(default=None),
    session: str | None = Query(default=None),
    teacher_uid: str | None = Query(default=None),
) -> PlanListResponse:
    items = list_plans(
        teacher=teacher,
        status=status.value if status else None,
        session=session,
        teacher_uid=teacher_uid,
    )
    return PlanListResponse(items=items)


@router.get("/plans/{plan_id}", response_model=PlanRecord)
async def plan_detail(plan_id: str) -> PlanRecord:
    record = get_plan(plan_id)
    if not record:
        raise HTTPException(status_code=404, detail="Plan not found.")
    return PlanRecord.model_validate(record)


@router.post("/plans/{plan_id}/review", response_model=PlanRecord)
async def review(plan_id: str, payload: ReviewRequest) -> PlanRecord:
    reviewer = (payload.reviewer_name or "").strip() or "Coordonnateur"
    if not review_plan(plan_id, payload.status, payload.comment.strip(), reviewer):
        raise HTTPException(status_code=404, detail="Plan not found.")
    log.info("plan %s marked %s by %s", plan_id, payload.status, reviewer)
    return PlanRecord.model_validate(get_plan(plan_id))


@router.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    return HealthResponse(
        status="ok",
        engine=_evaluator(request).engine,
        min_questions=settings.min_questions,
    )
