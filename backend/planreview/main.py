from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from .api.routes import router
from .config import settings
from .db import ensure_paths, init_db
from .services.evaluator import AnswerEvaluator, get_evaluator
from .services.submission import SessionRegistry
from .storage import BlobStore


@asynccontextmanager
async def lifespan(_: FastAPI):
    ensure_paths()
    init_db()
    yield


def create_app(evaluator: AnswerEvaluator | None = None, blob_store: BlobStore | None = None) -> FastAPI:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s  %(levelname)s  %(name)s  %(message)s",
    )
    ensure_paths()
    init_db()

    app = FastAPI(title="Plan Review API", version="0.1.0", lifespan=lifespan)
    app.state.evaluator = evaluator or get_evaluator()
    app.state.blob_store = blob_store or BlobStore()
    app.state.sessions = SessionRegistry()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    uploads_path = app.state.blob_store.root
    uploads_path.mkdir(parents=True, exist_ok=True)
    app.mount("/uploads", StaticFiles(directory=str(uploads_path)), name="uploads")

    return app


app = create_app()
