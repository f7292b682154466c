# markwise/main.py
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from markwise.core.config import settings
from markwise.core.logging_config import setup_logging
from markwise.db.base import Base
from markwise.db.session import engine
from markwise.api.v1.endpoints import (
    assessments,
    auth,
    classes,
    health,
    scores,
    submissions,
    users,
)
from markwise.services.backends import build_pipeline

setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.PROJECT_NAME)

origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup():
    Base.metadata.create_all(bind=engine)
    # one pipeline (and backend client) per process
    app.state.grading = build_pipeline(settings)


@app.on_event("shutdown")
async def on_shutdown():
    resources = getattr(app.state, "grading", None)
    if resources is not None:
        await resources.aclose()
        logger.info("Grading pipeline closed")


app.include_router(auth.router, prefix="/api/v1/auth", tags=["auth"])
app.include_router(users.router, prefix="/api/v1")
app.include_router(classes.router, prefix="/api/v1")
app.include_router(assessments.router, prefix="/api/v1")
app.include_router(submissions.router, prefix="/api/v1")
app.include_router(scores.router, prefix="/api/v1")
app.include_router(health.router, prefix="/api/v1/health")
