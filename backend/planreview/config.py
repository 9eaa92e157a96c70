from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _load_dotenv(path: Path) -> None:
    if not path.exists():
        return

    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if not key:
            continue
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        os.environ.setdefault(key, value)


def _resolve_path(base_dir: Path, value: str) -> Path:
    raw = Path(value)
    return raw if raw.is_absolute() else (base_dir / raw).resolve()


@dataclass(frozen=True)
class Settings:
    base_dir: Path
    db_path: Path
    storage_path: Path
    allowed_origins: list[str]
    openai_api_key: str | None
    openai_model: str
    openai_base_url: str | None
    openai_timeout_seconds: int
    min_questions: int
    log_level: str

    @property
    def remote_evaluation_enabled(self) -> bool:
        return bool(self.openai_api_key)

    @classmethod
    def load(cls) -> "Settings":
        base_dir = Path(__file__).resolve().parents[1]
        _load_dotenv(base_dir / ".env")

        db_path = _resolve_path(base_dir, os.getenv("PLANREVIEW_DB_PATH", "data/planreview.db"))
        storage_path = _resolve_path(base_dir, os.getenv("PLANREVIEW_STORAGE_PATH", "data/uploads"))

        allowed_origins_env = os.getenv(
            "PLANREVIEW_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        )
        allowed_origins = [item.strip() for item in allowed_origins_env.split(",") if item.strip()]

        return cls(
            base_dir=base_dir,
            db_path=db_path,
            storage_path=storage_path,
            allowed_origins=allowed_origins,
            openai_api_key=(os.getenv("OPENAI_API_KEY") or "").strip() or None,
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            openai_base_url=os.getenv("OPENAI_BASE_URL") or None,
            openai_timeout_seconds=int(os.getenv("OPENAI_TIMEOUT_SECONDS", "25")),
            min_questions=max(1, int(os.getenv("PLANREVIEW_MIN_QUESTIONS", "10"))),
            log_level=os.getenv("PLANREVIEW_LOG_LEVEL", "INFO").upper(),
        )


settings = Settings.load()
