from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .database import init_db
from .errors import register_error_handlers

from .api.auth import router as auth_router
from .api.family import router as family_router
from .api.categories import router as categories_router
from .api.chat import router as chat_router
from .api.budget import router as budget_router
from .api.profile import router as profile_router


def create_app() -> FastAPI:
    app = FastAPI(
        title="Family Budget API",
        version=settings.app_version,
    )

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Startup ---
    @app.on_event("startup")
    def _startup() -> None:
        # Creates tables for all registered SQLModel models (idempotent)
        init_db()

    # --- Error envelope ---
    register_error_handlers(app)

    # --- Health / meta ---
    @app.get("/health", tags=["meta"])
    def health() -> Dict[str, Any]:
        return {
            "ok": True,
            "env": settings.env,
            "mail_backend": settings.mail_backend,
        }

    @app.get("/version", tags=["meta"])
    def version() -> Dict[str, Any]:
        return {"version": settings.app_version}

    # --- API routers ---
    app.include_router(auth_router)
    app.include_router(family_router)
    app.include_router(categories_router)
    app.include_router(chat_router)
    app.include_router(budget_router)
    app.include_router(profile_router)

    return app


app = create_app()


def run() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    import uvicorn

    # init_db is handled by the FastAPI startup hook.
    uvicorn.run(
        "familybudget.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
    )
