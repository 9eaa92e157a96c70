from __future__ import annotations


STATUS_KEYS = ("aiStatus", "status")
FEEDBACK_KEYS = ("aiFeedback", "feedback")
HIGHLIGHT_KEYS = ("aiHighlights", "highlights")

VERDICT_JSON_SCHEMA: dict = {
    "type": "object",
    "required": ["status", "feedback", "highlights"],
    "properties": {
        "status": {"type": "string", "minLength": 1},
        "feedback": {"type": "string"},
        "highlights": {
            "type": "array",
            "maxItems": 10,
            "items": {"type": "string"},
        },
    },
}


SYSTEM_PROMPT = """
Tu es un coordonnateur pédagogique. Vérifie si une réponse respecte la question
et la règle de validation fournie.

Décision:
- Conforme: la réponse couvre la question et respecte la règle.
- À améliorer: la réponse est pertinente mais incomplète ou imprécise.
- Non conforme: la réponse est vide, hors sujet ou contredit la règle.

Format:
- Retourne uniquement un objet JSON avec les clés aiStatus (Conforme, À améliorer,
  Non conforme), aiFeedback (français, 2 phrases maximum) et aiHighlights
  (liste courte des éléments requis mais absents).
- Pas de markdown, pas de commentaire additionnel.
""".strip()


def build_user_prompt(question: str, rule: str, response: str) -> str:
    return (
        f"Question: {question}\n"
        f"Règle IA: {rule or 'Non spécifiée'}\n"
        f"Réponse de l'enseignant:\n{response}\n\n"
        "Retourne uniquement le JSON demandé, sans commentaire additionnel."
    )
