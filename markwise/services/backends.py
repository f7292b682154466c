# markwise/services/backends.py
"""
Builds the grading pipeline from settings.

Backend names are resolved here, once per process (API startup or RQ job);
nothing downstream branches on them.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from openai import AsyncOpenAI

from markwise.core.config import Settings, settings as default_settings
from markwise.core.exceptions import ConfigurationError
from markwise.db.session import SessionLocal
from markwise.services.file_storage import FileStore, LocalFileStore, S3FileStore
from markwise.services.grading import Grader, KeywordGrader, OpenAIGrader
from markwise.services.grading_pipeline import SubmissionPipeline
from markwise.services.openai_client import build_openai_client
from markwise.services.storage import SqlAlchemySubmissionStore
from markwise.services.text_extraction import (
    OpenAIVisionExtractor,
    StubTextExtractor,
    TextExtractionService,
    TextExtractor,
)

logger = logging.getLogger(__name__)

EXTRACTOR_BACKENDS = ("stub", "openai")
GRADER_BACKENDS = ("keyword", "openai", "transformer")
FILE_STORAGE_BACKENDS = ("local", "s3")


def _needs_openai(cfg: Settings) -> bool:
    return cfg.EXTRACTOR_BACKEND == "openai" or cfg.GRADER_BACKEND == "openai"


def build_text_extractor(cfg: Settings, client: Optional[AsyncOpenAI] = None) -> TextExtractor:
    name = cfg.EXTRACTOR_BACKEND
    if name == "stub":
        return StubTextExtractor()
    if name == "openai":
        if client is None:
            raise ConfigurationError("openai extractor needs an OpenAI client")
        return OpenAIVisionExtractor(client, model=cfg.EXTRACTION_MODEL)
    raise ConfigurationError(
        f"unknown EXTRACTOR_BACKEND {name!r}, expected one of {EXTRACTOR_BACKENDS}"
    )


def build_grader(cfg: Settings, client: Optional[AsyncOpenAI] = None) -> Grader:
    name = cfg.GRADER_BACKEND
    if name == "keyword":
        return KeywordGrader()
    if name == "openai":
        if client is None:
            raise ConfigurationError("openai grader needs an OpenAI client")
        return OpenAIGrader(client, model=cfg.GRADING_MODEL)
    if name == "transformer":
        try:
            from markwise.services.transformer_grader import TransformerGrader
        except ImportError as e:
            raise ConfigurationError(
                "GRADER_BACKEND=transformer needs the 'ml' extra (torch, transformers)"
            ) from e
        return TransformerGrader(cfg.ML_MODEL_NAME, device=cfg.ML_DEVICE)
    raise ConfigurationError(
        f"unknown GRADER_BACKEND {name!r}, expected one of {GRADER_BACKENDS}"
    )


def build_file_store(cfg: Settings) -> FileStore:
    name = cfg.FILE_STORAGE_BACKEND
    if name == "local":
        return LocalFileStore(cfg.UPLOAD_DIR)
    if name == "s3":
        if not cfg.S3_BUCKET_NAME:
            raise ConfigurationError("FILE_STORAGE_BACKEND=s3 needs S3_BUCKET_NAME")
        return S3FileStore(
            cfg.S3_BUCKET_NAME,
            region_name=cfg.AWS_REGION,
            aws_access_key_id=cfg.AWS_ACCESS_KEY_ID,
            aws_secret_access_key=cfg.AWS_SECRET_ACCESS_KEY,
        )
    raise ConfigurationError(
        f"unknown FILE_STORAGE_BACKEND {name!r}, expected one of {FILE_STORAGE_BACKENDS}"
    )


@dataclass
class PipelineResources:
    """The pipeline plus the clients it was built with, closed together."""
    pipeline: SubmissionPipeline
    openai_client: Optional[AsyncOpenAI] = None

    async def aclose(self) -> None:
        if self.openai_client is not None:
            await self.openai_client.close()
            self.openai_client = None


def build_pipeline(
    cfg: Settings = default_settings,
    *,
    session_factory=SessionLocal,
) -> PipelineResources:
    client = None
    if _needs_openai(cfg):
        client = build_openai_client(
            cfg.OPENAI_API_KEY,
            base_url=cfg.OPENAI_BASE_URL,
            timeout=cfg.BACKEND_REQUEST_TIMEOUT_SECONDS,
        )

    extraction = TextExtractionService(
        build_text_extractor(cfg, client),
        batch_size=cfg.OCR_BATCH_SIZE,
        jpeg_quality=cfg.IMAGE_JPEG_QUALITY,
    )
    grader = build_grader(cfg, client)
    pipeline = SubmissionPipeline(
        SqlAlchemySubmissionStore(session_factory),
        build_file_store(cfg),
        extraction,
        grader,
        timeout_seconds=cfg.PIPELINE_TIMEOUT_SECONDS,
    )
    logger.info(
        f"Grading pipeline ready: extractor={extraction.extractor.name}, "
        f"grader={grader.name}, storage={cfg.FILE_STORAGE_BACKEND}"
    )
    return PipelineResources(pipeline, client)
