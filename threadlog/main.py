"""threadlog FastAPI backend: application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from threadlog import config
from threadlog.observability import initialize as initialize_observability, shutdown as shutdown_observability
from threadlog.routers.sessions import sessions_router

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("threadlog")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("threadlog backend starting up")
    initialize_observability(app)
    if not config.PROJECTS_DIR.is_dir():
        logger.warning(f"Projects directory {config.PROJECTS_DIR} does not exist yet")

    yield

    logger.info("threadlog backend shutting down")
    shutdown_observability(app)


app = FastAPI(
    title="threadlog API",
    description="Browse, stitch and live-tail agent conversation logs",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sessions_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "projectsDir": str(config.PROJECTS_DIR),
        "corpus": "present" if config.PROJECTS_DIR.is_dir() else "missing",
    }


def run() -> None:
    uvicorn.run("threadlog.main:app", host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    run()
