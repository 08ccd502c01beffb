"""FastAPI application factory for the analyzer server."""

from __future__ import annotations

from fastapi import FastAPI

from nr5g_analyzer import __version__
from nr5g_analyzer.config import EngineSettings
from nr5g_analyzer.engine import Engine
from nr5g_analyzer.server.routes import router
from nr5g_analyzer.server.ws import router as ws_router


def create_app(engine: Engine | None = None) -> FastAPI:
    app = FastAPI(title="NR5G Spectrum Analyzer", version=__version__)
    app.state.engine = engine or Engine(EngineSettings.from_env())
    app.include_router(router)
    app.include_router(ws_router)
    return app
