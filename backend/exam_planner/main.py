import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, get_settings
from .db import dispose_engine, init_db
from .logging_config import configure_logging
from .plan_routes import router as plan_router


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    logger.info(
        "Exam planner starting (persistence=%s, timezone=%s, buffer=%.0f%%)",
        settings.persistence_mode,
        settings.default_timezone,
        settings.buffer_fraction * 100,
    )
    if settings.persistence_mode == "database":
        init_db()
    try:
        yield
    finally:
        if settings.persistence_mode == "database":
            dispose_engine()


app = FastAPI(title="Exam Planner Backend", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/healthz")
def health(settings: Settings = Depends(get_settings)) -> Dict[str, str]:
    return {"status": "ok", "persistence": settings.persistence_mode}


app.include_router(plan_router)
