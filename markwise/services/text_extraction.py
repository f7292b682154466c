"""
Text Extraction Service
Turns the pages of one submission into a single OCR transcript.

Pages are normalized concurrently, split into fixed-size batches and sent to
the extraction backend strictly in page order. Batch transcripts are joined
with ``BATCH_SEPARATOR``.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Sequence

from openai import AsyncOpenAI

from markwise.core.exceptions import SubmissionInputError
from markwise.services.normalizer import (
    DEFAULT_JPEG_QUALITY,
    Normalized,
    NormalizationOutcome,
    normalize_pages,
)
from markwise.services.openai_client import chat_completion, data_url
from markwise.services.prompts import (
    MARK_SCHEME_PDF_PROMPT,
    OCR_PROMPT_SINGLE,
    ocr_prompt_batch,
)

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 6
BATCH_SEPARATOR = "\n\n---\n\n"
PDF_MIME_TYPE = "application/pdf"


@dataclass(frozen=True)
class PageImage:
    """One uploaded page: raw bytes plus the declared MIME type."""
    buffer: bytes
    mime_type: str
    filename: str | None = None


@dataclass(frozen=True)
class PageBatch:
    pages: tuple[PageImage, ...]
    start_page: int  # 1-based, inclusive
    end_page: int
    number: int  # 1-based
    total: int


@dataclass(frozen=True)
class ExtractedText:
    text: str
    confidence: float  # 0-100


@dataclass(frozen=True)
class ExtractionResult:
    text: str
    confidence: float
    page_count: int
    batch_count: int
    normalized_count: int


def chunk_pages(pages: Sequence[PageImage], size: int) -> list[PageBatch]:
    """Split pages into consecutive batches of ``size``, keeping page order."""
    if size < 1:
        raise ValueError("batch size must be at least 1")

    starts = range(0, len(pages), size)
    total = len(starts)
    return [
        PageBatch(
            pages=tuple(pages[i:i + size]),
            start_page=i + 1,
            end_page=min(i + size, len(pages)),
            number=n,
            total=total,
        )
        for n, i in enumerate(starts, 1)
    ]


class TextExtractor(ABC):
    """Extraction backend: one call per page, batch or PDF."""

    name = "base"

    @abstractmethod
    async def extract_page(self, page: PageImage) -> ExtractedText:
        ...

    @abstractmethod
    async def extract_batch(self, batch: PageBatch) -> ExtractedText:
        ...

    @abstractmethod
    async def extract_pdf(self, buffer: bytes) -> ExtractedText:
        ...


class StubTextExtractor(TextExtractor):
    """
    Deterministic extractor for tests and offline development.

    Pages whose bytes decode as UTF-8 are returned verbatim, so a test can
    upload ``text/plain`` "photos" and control the transcript exactly.
    """

    name = "stub"
    PLACEHOLDER = "Mocked OCR text for page {page}"

    def __init__(self):
        self.batches_seen: list[tuple[int, int]] = []

    @staticmethod
    def _decode(buffer: bytes) -> str | None:
        try:
            return buffer.decode("utf-8").strip()
        except UnicodeDecodeError:
            return None

    async def extract_page(self, page: PageImage) -> ExtractedText:
        text = self._decode(page.buffer)
        if text is None:
            return ExtractedText(self.PLACEHOLDER.format(page=1), 50.0)
        return ExtractedText(text, 100.0)

    async def extract_batch(self, batch: PageBatch) -> ExtractedText:
        self.batches_seen.append((batch.start_page, batch.end_page))
        parts = []
        confidence = 100.0
        for page_no, page in enumerate(batch.pages, batch.start_page):
            text = self._decode(page.buffer)
            if text is None:
                text = self.PLACEHOLDER.format(page=page_no)
                confidence = 50.0
            parts.append(text)
        return ExtractedText("\n".join(parts), confidence)

    async def extract_pdf(self, buffer: bytes) -> ExtractedText:
        text = self._decode(buffer)
        if text is None:
            return ExtractedText("Mocked mark scheme text", 50.0)
        return ExtractedText(text, 100.0)


class OpenAIVisionExtractor(TextExtractor):
    """Extraction through an OpenAI vision-capable chat model."""

    name = "openai"
    # the backend reports no confidence of its own
    REPORTED_CONFIDENCE = 95.0

    def __init__(self, client: AsyncOpenAI, *, model: str):
        self.client = client
        self.model = model

    @staticmethod
    def _page_part(page: PageImage, page_no: int) -> dict:
        if page.mime_type == PDF_MIME_TYPE:
            return {
                "type": "file",
                "file": {
                    "filename": page.filename or f"page-{page_no}.pdf",
                    "file_data": data_url(page.buffer, page.mime_type),
                },
            }
        return {
            "type": "image_url",
            "image_url": {"url": data_url(page.buffer, page.mime_type), "detail": "high"},
        }

    async def _complete(self, prompt: str, parts: list[dict]) -> ExtractedText:
        text = await chat_completion(
            self.client,
            model=self.model,
            temperature=0,
            messages=[
                {"role": "user", "content": [{"type": "text", "text": prompt}, *parts]},
            ],
        )
        return ExtractedText(text, self.REPORTED_CONFIDENCE)

    async def extract_page(self, page: PageImage) -> ExtractedText:
        return await self._complete(OCR_PROMPT_SINGLE, [self._page_part(page, 1)])

    async def extract_batch(self, batch: PageBatch) -> ExtractedText:
        prompt = ocr_prompt_batch(batch.start_page, batch.end_page, batch.number, batch.total)
        parts = [
            self._page_part(page, page_no)
            for page_no, page in enumerate(batch.pages, batch.start_page)
        ]
        return await self._complete(prompt, parts)

    async def extract_pdf(self, buffer: bytes) -> ExtractedText:
        page = PageImage(buffer, PDF_MIME_TYPE, filename="mark-scheme.pdf")
        return await self._complete(MARK_SCHEME_PDF_PROMPT, [self._page_part(page, 1)])


class TextExtractionService:
    """
    Normalizes and batches pages, then drives a ``TextExtractor``.

    Backend errors are not caught here; the caller decides about retries.
    """

    def __init__(
        self,
        extractor: TextExtractor,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        jpeg_quality: int = DEFAULT_JPEG_QUALITY,
    ):
        if batch_size < 1:
            raise ValueError("batch size must be at least 1")
        self.extractor = extractor
        self.batch_size = batch_size
        self.jpeg_quality = jpeg_quality

    async def _normalize(self, pages: Sequence[PageImage]) -> tuple[list[PageImage], int]:
        outcomes: list[NormalizationOutcome] = await normalize_pages(
            [(p.buffer, p.mime_type) for p in pages],
            quality=self.jpeg_quality,
        )
        return [
            PageImage(outcome.buffer, outcome.mime_type, page.filename)
            for page, outcome in zip(pages, outcomes)
        ], sum(isinstance(o, Normalized) for o in outcomes)

    async def extract_submission(self, pages: Sequence[PageImage]) -> ExtractionResult:
        if not pages:
            raise SubmissionInputError("Submission has no pages to extract")
        for i, page in enumerate(pages, 1):
            if not page.buffer:
                raise SubmissionInputError(f"Page {i} is empty")

        logger.info(f"Normalizing {len(pages)} page(s)")
        normalized, normalized_count = await self._normalize(pages)

        if len(normalized) == 1:
            result = await self.extractor.extract_page(normalized[0])
            logger.info(f"Extracted {len(result.text)} characters from a single page")
            return ExtractionResult(
                text=result.text,
                confidence=result.confidence,
                page_count=1,
                batch_count=1,
                normalized_count=normalized_count,
            )

        batches = chunk_pages(normalized, self.batch_size)
        texts = []
        confidences = []
        for batch in batches:
            logger.info(
                f"OCR batch {batch.number}/{batch.total} "
                f"(pages {batch.start_page}-{batch.end_page})"
            )
            result = await self.extractor.extract_batch(batch)
            texts.append(result.text)
            confidences.append(result.confidence)

        combined = BATCH_SEPARATOR.join(texts)
        logger.info(
            f"Extracted {len(combined)} characters from {len(normalized)} pages "
            f"in {len(batches)} batch(es)"
        )
        return ExtractionResult(
            text=combined,
            confidence=min(confidences),
            page_count=len(normalized),
            batch_count=len(batches),
            normalized_count=normalized_count,
        )

    async def extract_mark_scheme(self, buffer: bytes) -> ExtractionResult:
        if not buffer:
            raise SubmissionInputError("Mark scheme document is empty")

        result = await self.extractor.extract_pdf(buffer)
        return ExtractionResult(
            text=result.text,
            confidence=result.confidence,
            page_count=1,
            batch_count=1,
            normalized_count=0,
        )
