"""
OpenAI Client Service
Builds the process-wide AsyncOpenAI handle and normalises its errors
"""

import base64
import logging
from typing import Any

import openai
from openai import AsyncOpenAI

from markwise.core.exceptions import (
    BackendError,
    BackendResponseError,
    ConfigurationError,
)

logger = logging.getLogger(__name__)


def build_openai_client(
    api_key: str | None,
    *,
    base_url: str | None = None,
    timeout: float = 120.0,
) -> AsyncOpenAI:
    """
    Construct the client once at process start and pass it to the backends.

    Retries are disabled: a failed call surfaces to the caller, which owns
    the retry policy.
    """
    if not api_key:
        raise ConfigurationError("OPENAI_API_KEY is not configured")

    return AsyncOpenAI(
        api_key=api_key,
        base_url=base_url,
        timeout=timeout,
        max_retries=0,
    )


def data_url(buffer: bytes, mime_type: str) -> str:
    encoded = base64.b64encode(buffer).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def strip_code_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


async def chat_completion(client: AsyncOpenAI, **kwargs: Any) -> str:
    """
    Run one chat completion and return the message text.

    Raises:
        ConfigurationError: bad credentials, unknown model, permission denied
        BackendError: timeouts, rate limits, connection and server errors
        BackendResponseError: the backend returned no content
    """
    try:
        response = await client.chat.completions.create(**kwargs)
    except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
        raise ConfigurationError(f"backend rejected credentials: {e}") from e
    except openai.NotFoundError as e:
        raise ConfigurationError(f"model {kwargs.get('model')!r} not available: {e}") from e
    except openai.APITimeoutError as e:
        raise BackendError("backend request timed out") from e
    except openai.RateLimitError as e:
        raise BackendError(f"backend rate limit reached: {e}") from e
    except openai.APIConnectionError as e:
        raise BackendError(f"backend connection failed: {e}") from e
    except openai.APIStatusError as e:
        raise BackendError(f"backend error {e.status_code}: {e}") from e

    if not response.choices:
        raise BackendResponseError("backend returned no choices")

    content = response.choices[0].message.content
    if content is None:
        raise BackendResponseError("backend returned an empty message")

    return content.strip()
