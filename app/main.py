# app/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.db.base import Base
from app.db.session import engine

# Models must be imported before create_all
from app.models import assignment, session_checkpoint, submission, template  # noqa: F401

# Import routers (router objects, not modules)
from app.api.sessions import router as sessions_router
from app.api.assignments import router as assignments_router
from app.services.registry import session_registry

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    yield
    # Tickers stop; checkpoints stay for resume
    session_registry.shutdown()


app = FastAPI(
    title="Incubation Assessment Engine",
    version="1.0.0",
    lifespan=lifespan,
)

# --------------------------------------------------
# CORS CONFIG
# --------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    # allow origin variations on localhost (ports) during development
    allow_origin_regex=r"http://localhost(:[0-9]+)?",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --------------------------------------------------
# API ROUTES
# --------------------------------------------------

# Timed sessions (mount, answer, advance, exit)
app.include_router(
    sessions_router,
    prefix="/api/v1",
    tags=["Sessions"]
)

# Assignment status, retake, submission records
app.include_router(
    assignments_router,
    prefix="/api/v1",
    tags=["Assignments"]
)

# --------------------------------------------------
# ROOT HEALTH CHECK
# --------------------------------------------------
@app.get("/")
def health_check():
    return {
        "status": "ok",
        "service": "Incubation Assessment Engine",
        "version": "1.0.0"
    }
