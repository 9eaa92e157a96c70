from __future__ import annotations

import dataclasses
import os
import sys
import tempfile
import unittest
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

import httpx
from openai import APIConnectionError, InternalServerError

_TMP = Path(tempfile.mkdtemp(prefix="planreview-tests-"))
os.environ.setdefault("PLANREVIEW_DB_PATH", str(_TMP / "planreview.db"))
os.environ.setdefault("PLANREVIEW_STORAGE_PATH", str(_TMP / "uploads"))

sys.path.append(str(Path(__file__).resolve().parents[1]))

from planreview.config import Settings, settings
from planreview.errors import EvaluationError
from planreview.models import EvaluationEngine, Verdict, VerdictStatus
from planreview.services.evaluator import (
    HEURISTIC_MODEL,
    HeuristicEvaluator,
    OpenAIEvaluator,
    build_evaluator,
    evaluate_with_fallback,
    get_evaluator,
    needs_reevaluation,
    normalize_status,
    run_heuristic,
)
from planreview.services.openai_service import MAX_TOKENS, TEMPERATURE, OpenAIService


OPENAI_URL = "https://api.openai.com/v1/chat/completions"

CONFORMING_ANSWER = (
    "Les préalables du cours sont revus en première semaine. L'évaluation combine un examen "
    "formatif, deux laboratoires notés et un projet final présenté en équipe devant la classe."
)


class _FakeCompletions:
    def __init__(self, outcome) -> None:
        self.outcome = outcome
        self.calls: list[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


class _FakeClient:
    def __init__(self, outcome) -> None:
        self.completions = _FakeCompletions(outcome)
        self.chat = SimpleNamespace(completions=self.completions)


def _completion(content, model: str | None = "gpt-4o-mini-2024-07-18"):
    message = SimpleNamespace(content=content)
    return SimpleNamespace(model=model, choices=[SimpleNamespace(message=message)])


def _remote(outcome) -> tuple[OpenAIEvaluator, _FakeClient]:
    client = _FakeClient(outcome)
    service = OpenAIService(client=client, model="gpt-4o-mini")
    return OpenAIEvaluator(service=service), client


class HeuristicTestCase(unittest.TestCase):
    def test_empty_response_is_non_conforme(self) -> None:
        for rule in ("", "objectifs évaluation", "x"):
            verdict = run_heuristic("   \n ", rule)
            self.assertEqual(verdict.status, VerdictStatus.non_conforme)
            self.assertIn("réponse vide", verdict.feedback.lower())
            self.assertEqual(verdict.highlights, [])

    def test_short_response_needs_more_detail(self) -> None:
        verdict = run_heuristic("Objectifs clairs.", "objectifs évaluation")
        self.assertEqual(verdict.status, VerdictStatus.a_ameliorer)
        self.assertIn("80", verdict.feedback)
        self.assertEqual(run_heuristic("x" * 79).status, VerdictStatus.a_ameliorer)

    def test_missing_rule_keyword_is_highlighted(self) -> None:
        response = "Le cours commence par une revue des notions de base et se termine par un examen écrit."
        self.assertGreaterEqual(len(response), 80)
        self.assertLess(len(response), 150)
        verdict = run_heuristic(response, "préalables évaluation")
        self.assertEqual(verdict.status, VerdictStatus.a_ameliorer)
        self.assertEqual(verdict.highlights, ["préalables"])
        self.assertIn("préalables", verdict.feedback)

    def test_rule_keywords_are_case_insensitive_and_limited_to_two(self) -> None:
        response = "PRÉALABLES revus. " + "Évaluation par projet. " + "a" * 140
        verdict = run_heuristic(response, "Préalables évaluation rubrique")
        self.assertEqual(verdict.status, VerdictStatus.conforme)

    def test_short_rule_tokens_are_ignored(self) -> None:
        response = "b" * 120
        verdict = run_heuristic(response, "le et objectifs")
        self.assertEqual(verdict.highlights, [])
        self.assertIn("objectifs", verdict.feedback)
        self.assertEqual(verdict.status, VerdictStatus.a_ameliorer)

    def test_long_response_meeting_rule_is_conforme(self) -> None:
        verdict = run_heuristic(CONFORMING_ANSWER, "préalables évaluation")
        self.assertGreaterEqual(len(CONFORMING_ANSWER), 150)
        self.assertEqual(verdict.status, VerdictStatus.conforme)
        self.assertEqual(verdict.highlights, [])
        self.assertEqual(verdict.engine, EvaluationEngine.heuristique)
        self.assertEqual(verdict.model, HEURISTIC_MODEL)

    def test_heuristic_is_pure(self) -> None:
        first = run_heuristic(CONFORMING_ANSWER[:100], "préalables évaluation")
        second = run_heuristic(CONFORMING_ANSWER[:100], "préalables évaluation")
        self.assertEqual(first, second)

    def test_normalize_status_variants(self) -> None:
        self.assertEqual(normalize_status("Conforme"), VerdictStatus.conforme)
        self.assertEqual(normalize_status("NON CONFORME"), VerdictStatus.non_conforme)
        self.assertEqual(normalize_status("A ameliorer"), VerdictStatus.a_ameliorer)
        self.assertEqual(normalize_status("À améliorer"), VerdictStatus.a_ameliorer)
        self.assertEqual(normalize_status("peut-être"), VerdictStatus.a_ameliorer)


class RemoteEvaluatorTestCase(unittest.IsolatedAsyncioTestCase):
    async def test_parses_fenced_reply_with_ai_keys(self) -> None:
        content = (
            "```json\n"
            '{"aiStatus": "Non conforme", "aiFeedback": "Il manque les critères.", '
            '"aiHighlights": ["critères"]}\n'
            "```"
        )
        evaluator, client = _remote(_completion(content))
        verdict = await evaluator.evaluate("Décrivez l'évaluation", "critères pondération", "Un examen.")

        self.assertEqual(verdict.status, VerdictStatus.non_conforme)
        self.assertEqual(verdict.feedback, "Il manque les critères.")
        self.assertEqual(verdict.highlights, ["critères"])
        self.assertEqual(verdict.engine, EvaluationEngine.chatgpt)
        self.assertEqual(verdict.model, "gpt-4o-mini-2024-07-18")

        call = client.completions.calls[0]
        self.assertEqual(call["temperature"], TEMPERATURE)
        self.assertEqual(call["max_tokens"], MAX_TOKENS)
        self.assertEqual([m["role"] for m in call["messages"]], ["system", "user"])
        self.assertIn("critères pondération", call["messages"][1]["content"])

    async def test_accepts_plain_key_variant_and_default_model(self) -> None:
        content = '{"status": "Conforme", "feedback": "Complet.", "highlights": []}'
        evaluator, client = _remote(_completion(content, model=None))
        verdict = await evaluator.evaluate("Q", "", "R")
        self.assertEqual(verdict.status, VerdictStatus.conforme)
        self.assertEqual(verdict.model, "gpt-4o-mini")
        self.assertIn("Non spécifiée", client.completions.calls[0]["messages"][1]["content"])

    async def test_unparsable_reply_raises(self) -> None:
        evaluator, _ = _remote(_completion("Je pense que c'est conforme."))
        with self.assertRaises(EvaluationError):
            await evaluator.evaluate("Q", "", "R")

    async def test_reply_missing_fields_raises(self) -> None:
        evaluator, _ = _remote(_completion('{"aiStatus": "Conforme"}'))
        with self.assertRaises(EvaluationError):
            await evaluator.evaluate("Q", "", "R")

    async def test_http_error_carries_status_and_truncated_body(self) -> None:
        request = httpx.Request("POST", OPENAI_URL)
        response = httpx.Response(500, text="x" * 500, request=request)
        error = InternalServerError("server error", response=response, body=None)
        evaluator, _ = _remote(error)

        with self.assertRaises(EvaluationError) as ctx:
            await evaluator.evaluate("Q", "", "R")
        message = str(ctx.exception)
        self.assertIn("500", message)
        self.assertIn("x" * 200, message)
        self.assertNotIn("x" * 201, message)

    async def test_connection_error_raises(self) -> None:
        error = APIConnectionError(request=httpx.Request("POST", OPENAI_URL))
        evaluator, _ = _remote(error)
        with self.assertRaises(EvaluationError):
            await evaluator.evaluate("Q", "", "R")


class FallbackTestCase(unittest.IsolatedAsyncioTestCase):
    async def test_remote_failure_falls_back_to_heuristic(self) -> None:
        evaluator, _ = _remote(_completion("pas du json"))
        verdict, notice = await evaluate_with_fallback(evaluator, "Q", "préalables évaluation", CONFORMING_ANSWER)
        self.assertEqual(verdict.engine, EvaluationEngine.heuristique)
        self.assertEqual(verdict.status, VerdictStatus.conforme)
        self.assertIsNotNone(notice)
        self.assertIn("JSON", notice)

    async def test_success_has_no_notice(self) -> None:
        verdict, notice = await evaluate_with_fallback(HeuristicEvaluator(), "Q", "", "")
        self.assertEqual(verdict.status, VerdictStatus.non_conforme)
        self.assertIsNone(notice)

    def test_needs_reevaluation_rule(self) -> None:
        heuristic = run_heuristic(CONFORMING_ANSWER)
        remote = Verdict(
            status=VerdictStatus.conforme,
            feedback="ok",
            engine=EvaluationEngine.chatgpt,
            model="gpt-4o-mini",
        )
        remote_evaluator, _ = _remote(_completion("{}"))
        local_evaluator = HeuristicEvaluator()

        self.assertTrue(needs_reevaluation(None, local_evaluator))
        self.assertTrue(needs_reevaluation(None, remote_evaluator))
        self.assertFalse(needs_reevaluation(heuristic, local_evaluator))
        self.assertTrue(needs_reevaluation(heuristic, remote_evaluator))
        self.assertFalse(needs_reevaluation(remote, remote_evaluator))
        self.assertFalse(needs_reevaluation(remote, local_evaluator))


class ModeSelectionTestCase(unittest.TestCase):
    def setUp(self) -> None:
        get_evaluator.cache_clear()
        self.addCleanup(get_evaluator.cache_clear)

    def _with_key(self, key: str | None):
        configured = dataclasses.replace(settings, openai_api_key=key)
        for target in (
            "planreview.services.evaluator.settings",
            "planreview.services.openai_service.settings",
        ):
            patcher = patch(target, configured)
            patcher.start()
            self.addCleanup(patcher.stop)

    def test_api_key_selects_remote_evaluator(self) -> None:
        self._with_key("sk-test")
        evaluator = build_evaluator()
        self.assertIsInstance(evaluator, OpenAIEvaluator)
        self.assertTrue(evaluator.is_remote)

    def test_missing_key_selects_heuristic(self) -> None:
        self._with_key(None)
        evaluator = build_evaluator()
        self.assertIsInstance(evaluator, HeuristicEvaluator)
        self.assertFalse(evaluator.is_remote)

    def test_blank_key_counts_as_missing(self) -> None:
        with patch.dict(os.environ, {"OPENAI_API_KEY": "   "}):
            loaded = Settings.load()
        self.assertIsNone(loaded.openai_api_key)
        self.assertFalse(loaded.remote_evaluation_enabled)

        with patch.dict(os.environ, {"OPENAI_API_KEY": " sk-live "}):
            loaded = Settings.load()
        self.assertEqual(loaded.openai_api_key, "sk-live")
        self.assertTrue(loaded.remote_evaluation_enabled)

    def test_mode_is_chosen_once_per_process(self) -> None:
        self._with_key(None)
        first = get_evaluator()
        self._with_key("sk-test")
        self.assertIs(get_evaluator(), first)
        self.assertIsInstance(get_evaluator(), HeuristicEvaluator)


if __name__ == "__main__":
    unittest.main()
