from __future__ import annotations

import json
import logging
import re
from typing import Any

from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI, OpenAIError

from ..config import settings
from ..errors import EvaluationError
from ..schemas import SYSTEM_PROMPT, build_user_prompt

log = logging.getLogger(__name__)

TEMPERATURE = 0.2
MAX_TOKENS = 350
ERROR_EXCERPT_CHARS = 200

_FENCE_RE = re.compile(r"```(?:json)?", flags=re.IGNORECASE)


class OpenAIService:
    def __init__(self, client: Any | None = None, model: str | None = None) -> None:
        self._model = (model or settings.openai_model or "").strip() or "gpt-4o-mini"
        if client is not None:
            self._client = client
            return

        if not settings.openai_api_key:
            raise RuntimeError("OPENAI_API_KEY is not configured.")

        self._client = AsyncOpenAI(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            timeout=settings.openai_timeout_seconds,
        )

    @property
    def model(self) -> str:
        return self._model

    async def grade_answer(self, question: str, rule: str, response: str) -> tuple[dict[str, Any], str]:
        """Send one grading request and return the parsed reply with the model label."""
        messages = self._build_chat_messages(question, rule, response)
        try:
            completion = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                temperature=TEMPERATURE,
                max_tokens=MAX_TOKENS,
            )
        except APIStatusError as exc:
            raise EvaluationError(
                f"Erreur OpenAI ({exc.status_code}): {exc.response.text[:ERROR_EXCERPT_CHARS]}"
            ) from exc
        except (APIConnectionError, APITimeoutError) as exc:
            raise EvaluationError(f"Service OpenAI injoignable: {exc}") from exc
        except OpenAIError as exc:
            raise EvaluationError(f"Erreur OpenAI: {exc}") from exc

        content = self._extract_content(completion)
        parsed = self._parse_json_text(content)
        if parsed is None:
            log.warning("unparsable grading reply: %r", content[:ERROR_EXCERPT_CHARS])
            raise EvaluationError("Réponse IA invalide (format JSON introuvable).")

        model_label = getattr(completion, "model", None) or self._model
        return parsed, str(model_label)

    @staticmethod
    def _build_chat_messages(question: str, rule: str, response: str) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_user_prompt(question, rule, response)},
        ]

    @staticmethod
    def _extract_content(completion: Any) -> str:
        choices = getattr(completion, "choices", None)
        if not choices:
            return ""
        message = getattr(choices[0], "message", None)
        content = getattr(message, "content", None)
        if isinstance(content, str):
            return content

        # Some compatible endpoints return a list of content parts.
        if isinstance(content, list):
            for item in content:
                text = item.get("text") if isinstance(item, dict) else getattr(item, "text", None)
                if isinstance(text, str) and text.strip():
                    return text
        return ""

    @staticmethod
    def _parse_json_text(text: str) -> dict[str, Any] | None:
        raw = _FENCE_RE.sub("", text or "").strip()
        if not raw:
            return None
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return None
        return parsed if isinstance(parsed, dict) else None
