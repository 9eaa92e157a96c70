from __future__ import annotations

import logging
import unicodedata
from functools import lru_cache
from typing import Any

from jsonschema import ValidationError as SchemaValidationError
from jsonschema import validate

from ..config import settings
from ..errors import EvaluationError
from ..models import EvaluationEngine, Verdict, VerdictStatus
from ..schemas import FEEDBACK_KEYS, HIGHLIGHT_KEYS, STATUS_KEYS, VERDICT_JSON_SCHEMA
from .openai_service import OpenAIService

log = logging.getLogger(__name__)

HEURISTIC_MODEL = "Heuristique locale"
MIN_DETAIL_CHARS = 80
MIN_STRUCTURE_CHARS = 150
RULE_KEYWORD_COUNT = 2
RULE_KEYWORD_MIN_LEN = 4


def run_heuristic(response: str, rule: str | None = None) -> Verdict:
    """Grade an answer offline. Pure and total: the same inputs always give the same verdict."""
    clean = (response or "").strip()

    if not clean:
        return _heuristic_verdict(VerdictStatus.non_conforme, "Réponse vide : la question est sans réponse.")

    if len(clean) < MIN_DETAIL_CHARS:
        return _heuristic_verdict(
            VerdictStatus.a_ameliorer,
            f"Ajoutez davantage de détails ({MIN_DETAIL_CHARS} caractères minimum).",
        )

    missing = _first_missing_rule_keyword(clean, rule)
    if missing:
        return _heuristic_verdict(
            VerdictStatus.a_ameliorer,
            f"Mentionnez l'élément suivant : \"{missing}\".",
            highlights=[missing],
        )

    if len(clean) < MIN_STRUCTURE_CHARS:
        return _heuristic_verdict(
            VerdictStatus.a_ameliorer,
            "Structurez la réponse avec les objectifs, les activités et l'évaluation.",
        )

    return _heuristic_verdict(VerdictStatus.conforme, "Réponse cohérente et suffisamment détaillée.")


def _first_missing_rule_keyword(clean_response: str, rule: str | None) -> str | None:
    if not rule or not rule.strip():
        return None
    haystack = clean_response.lower()
    keywords = rule.lower().split()[:RULE_KEYWORD_COUNT]
    for keyword in keywords:
        if len(keyword) >= RULE_KEYWORD_MIN_LEN and keyword not in haystack:
            return keyword
    return None


def _heuristic_verdict(
    status: VerdictStatus, feedback: str, highlights: list[str] | None = None
) -> Verdict:
    return Verdict(
        status=status,
        feedback=feedback,
        highlights=list(highlights or []),
        engine=EvaluationEngine.heuristique,
        model=HEURISTIC_MODEL,
    )


class AnswerEvaluator:
    engine: EvaluationEngine

    async def evaluate(self, question: str, rule: str, response: str) -> Verdict:
        raise NotImplementedError

    @property
    def is_remote(self) -> bool:
        return self.engine == EvaluationEngine.chatgpt


class HeuristicEvaluator(AnswerEvaluator):
    engine = EvaluationEngine.heuristique

    async def evaluate(self, question: str, rule: str, response: str) -> Verdict:
        return run_heuristic(response, rule)


class OpenAIEvaluator(AnswerEvaluator):
    engine = EvaluationEngine.chatgpt

    def __init__(self, service: OpenAIService | None = None) -> None:
        self._service = service or OpenAIService()

    async def evaluate(self, question: str, rule: str, response: str) -> Verdict:
        payload, model_label = await self._service.grade_answer(question, rule or "", response)
        data = _normalize_reply(payload)
        return Verdict(
            status=normalize_status(data["status"]),
            feedback=data["feedback"].strip(),
            highlights=[item.strip() for item in data["highlights"] if item.strip()],
            engine=EvaluationEngine.chatgpt,
            model=model_label,
        )


def _pick(payload: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return None


def _normalize_reply(payload: dict[str, Any]) -> dict[str, Any]:
    data = {
        "status": _pick(payload, STATUS_KEYS),
        "feedback": _pick(payload, FEEDBACK_KEYS),
        "highlights": _pick(payload, HIGHLIGHT_KEYS),
    }
    try:
        validate(instance=data, schema=VERDICT_JSON_SCHEMA)
    except SchemaValidationError as exc:
        raise EvaluationError(f"Réponse IA invalide: {exc.message}") from exc
    return data


def normalize_status(value: str) -> VerdictStatus:
    folded = unicodedata.normalize("NFD", value or "")
    folded = "".join(ch for ch in folded if not unicodedata.combining(ch)).lower()
    if "non" in folded:
        return VerdictStatus.non_conforme
    if "ameliorer" in folded:
        return VerdictStatus.a_ameliorer
    if "conforme" in folded:
        return VerdictStatus.conforme
    return VerdictStatus.a_ameliorer


async def evaluate_with_fallback(
    evaluator: AnswerEvaluator, question: str, rule: str, response: str
) -> tuple[Verdict, str | None]:
    """Evaluate one answer; a remote failure becomes a heuristic verdict plus a notice."""
    try:
        return await evaluator.evaluate(question, rule, response), None
    except EvaluationError as exc:
        log.warning("remote evaluation failed, using heuristic: %s", exc)
        return run_heuristic(response, rule), str(exc)


def needs_reevaluation(verdict: Verdict | None, evaluator: AnswerEvaluator) -> bool:
    """A missing verdict is always evaluated; a heuristic one is re-run once remote mode is available."""
    if verdict is None:
        return True
    return evaluator.is_remote and verdict.engine != EvaluationEngine.chatgpt


def build_evaluator() -> AnswerEvaluator:
    if settings.remote_evaluation_enabled:
        log.info("answer evaluation: remote (%s)", settings.openai_model)
        return OpenAIEvaluator()
    log.info("answer evaluation: local heuristic")
    return HeuristicEvaluator()


@lru_cache(maxsize=1)
def get_evaluator() -> AnswerEvaluator:
    return build_evaluator()
