"""
Text extraction: batching, page order, separators and input checks.
"""

from types import SimpleNamespace

import pytest

from markwise.core.exceptions import BackendError, SubmissionInputError
from markwise.services.openai_client import data_url
from markwise.services.text_extraction import (
    BATCH_SEPARATOR,
    ExtractedText,
    OpenAIVisionExtractor,
    PageImage,
    StubTextExtractor,
    TextExtractionService,
    chunk_pages,
)


def _pages(n):
    return [PageImage(f"page {i} text".encode(), "text/plain", f"p{i}.txt") for i in range(1, n + 1)]


class TestChunkPages:

    def test_batches_preserve_order(self):
        batches = chunk_pages(_pages(8), 6)

        assert [(b.start_page, b.end_page) for b in batches] == [(1, 6), (7, 8)]
        assert [b.number for b in batches] == [1, 2]
        assert all(b.total == 2 for b in batches)
        assert batches[1].pages[0].filename == "p7.txt"

    def test_rejects_zero_batch_size(self):
        with pytest.raises(ValueError):
            chunk_pages(_pages(2), 0)


class TestExtractionService:

    @pytest.mark.asyncio
    async def test_single_page(self):
        service = TextExtractionService(StubTextExtractor())
        result = await service.extract_submission(_pages(1))

        assert result.text == "page 1 text"
        assert result.batch_count == 1

    @pytest.mark.asyncio
    async def test_multi_page_batches_in_order(self):
        extractor = StubTextExtractor()
        service = TextExtractionService(extractor, batch_size=6)
        result = await service.extract_submission(_pages(8))

        assert extractor.batches_seen == [(1, 6), (7, 8)]
        first, second = result.text.split(BATCH_SEPARATOR)
        assert first.splitlines() == [f"page {i} text" for i in range(1, 7)]
        assert second.splitlines() == ["page 7 text", "page 8 text"]
        assert result.page_count == 8
        assert result.batch_count == 2

    @pytest.mark.asyncio
    async def test_batches_run_sequentially(self):
        calls = []

        class Recording(StubTextExtractor):
            async def extract_batch(self, batch):
                calls.append(("start", batch.number))
                result = await super().extract_batch(batch)
                calls.append(("end", batch.number))
                return result

        service = TextExtractionService(Recording(), batch_size=2)
        await service.extract_submission(_pages(5))

        assert calls == [
            ("start", 1), ("end", 1),
            ("start", 2), ("end", 2),
            ("start", 3), ("end", 3),
        ]

    @pytest.mark.asyncio
    async def test_confidence_is_lowest_batch(self):
        pages = _pages(2) + [PageImage(b"\xff\xfe\xfa", "image/png")]
        service = TextExtractionService(StubTextExtractor(), batch_size=2)
        result = await service.extract_submission(pages)

        assert result.confidence == 50.0
        assert "Mocked OCR text for page 3" in result.text

    @pytest.mark.asyncio
    async def test_no_pages_rejected(self):
        service = TextExtractionService(StubTextExtractor())
        with pytest.raises(SubmissionInputError):
            await service.extract_submission([])

    @pytest.mark.asyncio
    async def test_empty_page_rejected_before_extraction(self):
        extractor = StubTextExtractor()
        service = TextExtractionService(extractor)
        with pytest.raises(SubmissionInputError):
            await service.extract_submission([PageImage(b"a", "text/plain"), PageImage(b"", "text/plain")])
        assert extractor.batches_seen == []

    @pytest.mark.asyncio
    async def test_backend_error_propagates(self):
        class Failing(StubTextExtractor):
            async def extract_batch(self, batch):
                if batch.number == 2:
                    raise BackendError("rate limited")
                return await super().extract_batch(batch)

        service = TextExtractionService(Failing(), batch_size=1)
        with pytest.raises(BackendError):
            await service.extract_submission(_pages(3))

    @pytest.mark.asyncio
    async def test_mark_scheme_uses_pdf_path(self):
        class PdfOnly(StubTextExtractor):
            async def extract_pdf(self, buffer):
                return ExtractedText("Q1 [2] power rule", 95.0)

        service = TextExtractionService(PdfOnly())
        result = await service.extract_mark_scheme(b"%PDF-1.4")

        assert result.text == "Q1 [2] power rule"


class FakeCompletions:
    """Records chat.completions.create calls and answers with a fixed text."""

    def __init__(self):
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        message = SimpleNamespace(content=f"transcript {len(self.calls)}")
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _fake_client():
    completions = FakeCompletions()
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


def _sent(call):
    (message,) = call["messages"]
    prompt, *parts = message["content"]
    return prompt["text"], [p["image_url"]["url"] for p in parts]


class TestOpenAIVisionExtractor:

    @pytest.mark.asyncio
    async def test_batch_prompt_names_its_page_range(self):
        client, completions = _fake_client()
        extractor = OpenAIVisionExtractor(client, model="test-model")
        pages = [PageImage(f"jpeg {i}".encode(), "image/jpeg") for i in range(1, 6)]
        batch = chunk_pages(pages, 3)[1]

        result = await extractor.extract_batch(batch)

        assert result.text == "transcript 1"
        prompt, urls = _sent(completions.calls[0])
        assert "pages 4 to 5" in prompt
        assert "batch 2 of 2" in prompt
        assert urls == [data_url(b"jpeg 4", "image/jpeg"), data_url(b"jpeg 5", "image/jpeg")]
        assert completions.calls[0]["model"] == "test-model"

    @pytest.mark.asyncio
    async def test_batches_sent_in_page_order(self):
        client, completions = _fake_client()
        service = TextExtractionService(OpenAIVisionExtractor(client, model="m"), batch_size=2)
        pages = [PageImage(f"page {i}".encode(), "text/plain") for i in range(1, 6)]

        result = await service.extract_submission(pages)

        prompts = [_sent(call)[0] for call in completions.calls]
        for prompt, expected in zip(prompts, ["pages 1 to 2", "pages 3 to 4", "pages 5 to 5"], strict=True):
            assert expected in prompt
        sent_urls = [url for call in completions.calls for url in _sent(call)[1]]
        assert sent_urls == [data_url(p.buffer, p.mime_type) for p in pages]
        assert result.text.split(BATCH_SEPARATOR) == ["transcript 1", "transcript 2", "transcript 3"]
