"""FastAPI application wrapping the companion chat pipeline."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import load_config, section
from .embeddings import EmbeddingService, create_embedder
from .history import HistoryStore, create_history_store
from .llm import CompletionService, create_completion
from .pipeline import ChatPipeline, build_pipeline

logger = logging.getLogger(__name__)


# -----------------------------
# Pydantic request/response
# -----------------------------
class ChatRequest(BaseModel):
    input: str = Field(..., min_length=1, max_length=4000)


class ChatResponse(BaseModel):
    reply: str


# -----------------------------
# App factory
# -----------------------------
def create_app(
    config_path: Optional[str] = None,
    *,
    pipeline: Optional[ChatPipeline] = None,
    completion: Optional[CompletionService] = None,
    embedder: Optional[EmbeddingService] = None,
    history: Optional[HistoryStore] = None,
) -> FastAPI:
    """Build the pipeline (unless one is given) and return the app.

    Startup errors from the pipeline propagate: the process must not serve
    requests without a knowledge index.
    """
    cfg = load_config(config_path)

    if pipeline is None:
        pipeline = build_pipeline(
            cfg,
            completion=completion or create_completion(cfg),
            embedder=embedder or create_embedder(cfg),
            history=history or create_history_store(cfg),
        )

    cors_origins = section(cfg, "server").get("cors_origins", ["*"])

    app = FastAPI(title="Companion Chat Server", version="0.1.0")
    app.state.pipeline = pipeline
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Clients only ever read "reply", so rejected requests carry one too.
    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info("Rejected chat request: %s", exc.errors())
        return JSONResponse(status_code=422, content={"reply": pipeline.fallback_reply})

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {"ok": True, **pipeline.stats()}

    @app.post("/chat", response_model=ChatResponse)
    def chat(req: ChatRequest):
        msg = (req.input or "").strip()
        if not msg:
            return JSONResponse(status_code=400, content={"reply": pipeline.fallback_reply})

        try:
            result = pipeline.chat(msg)
        except Exception:
            logger.exception("Unhandled error while answering chat request")
            return JSONResponse(status_code=500, content={"reply": pipeline.fallback_reply})

        if not result.ok:
            return JSONResponse(status_code=500, content={"reply": result.reply})
        return ChatResponse(reply=result.reply)

    return app
