"""Generator client: HTTP connection to text and image generation backends.

Generation steps receive a Generator matching the protocol:

    async def generate(self, stage: str, prompt: str) -> str: ...
    async def generate_image(self, stage: str, prompt: str) -> bytes: ...

`stage` names the step that is calling (e.g. "story.victim",
"location_image"). Implementations may use it for logging or routing.

HttpGenerator is the production implementation. Tests inject StubGenerator
(tests/helpers.py) instead.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Literal, Protocol

import httpx

from obscura.errors import UpstreamGenerationError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol: every generator implementation must match these signatures
# ---------------------------------------------------------------------------

class Generator(Protocol):
    async def generate(self, stage: str, prompt: str) -> str: ...

    async def generate_image(self, stage: str, prompt: str) -> bytes: ...


# ---------------------------------------------------------------------------
# HttpGenerator: connects to a real backend
# ---------------------------------------------------------------------------

ProviderFormat = Literal["koboldcpp", "openai"]


def _first(items) -> dict:
    """First element of a response list when it is an object, else {}."""
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return {}


class HttpGenerator:
    """Async HTTP client for text-completion and image backends.

    Supported formats:
      "koboldcpp"    text:  POST /api/v1/generate      {"prompt": ...}
                              -> {"results": [{"text": "..."}]}
                     image: POST /sdapi/v1/txt2img     {"prompt": ...}
                              -> {"images": ["<base64>"]}
      "openai"       text:  POST /v1/completions       {"model": ..., "prompt": ...}
                              -> {"choices": [{"text": "..."}]}
                     image: POST /v1/images/generations {"prompt": ..., "response_format": "b64_json"}
                              -> {"data": [{"b64_json": "<base64>"}]}

    Every transport or protocol failure is raised as UpstreamGenerationError;
    timeouts included, so the orchestrator's failure policy applies to them
    like any other step failure.
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "koboldcpp",
        model: str = "",
        image_model: str = "",
        timeout: float = 120.0,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._format = provider_format
        self._model = model
        self._image_model = image_model
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_text_request(self, prompt: str) -> tuple[str, dict]:
        if self._format == "openai":
            body: dict = {"prompt": prompt}
            if self._model:
                body["model"] = self._model
            return f"{self._base_url}/v1/completions", body
        return f"{self._base_url}/api/v1/generate", {"prompt": prompt}

    def _build_image_request(self, prompt: str) -> tuple[str, dict]:
        if self._format == "openai":
            body: dict = {"prompt": prompt, "n": 1, "response_format": "b64_json"}
            if self._image_model:
                body["model"] = self._image_model
            return f"{self._base_url}/v1/images/generations", body
        return f"{self._base_url}/sdapi/v1/txt2img", {"prompt": prompt}

    def _parse_text(self, data: dict) -> str:
        if self._format == "openai":
            entry = _first(data.get("choices"))
            if not isinstance(entry.get("text"), str):
                raise UpstreamGenerationError(
                    "Unexpected response format from OpenAI-compatible backend"
                )
            return entry["text"]

        entry = _first(data.get("results"))
        if not isinstance(entry.get("text"), str):
            raise UpstreamGenerationError("Unexpected response format from KoboldCpp backend")
        return entry["text"]

    def _parse_image(self, data: dict) -> bytes:
        if self._format == "openai":
            encoded = _first(data.get("data")).get("b64_json")
        else:
            images = data.get("images")
            encoded = images[0] if isinstance(images, list) and images else None
        if not encoded or not isinstance(encoded, str):
            raise UpstreamGenerationError("Image backend returned no image")
        try:
            return base64.b64decode(encoded)
        except (binascii.Error, ValueError) as e:
            raise UpstreamGenerationError("Image backend returned invalid base64") from e

    async def _post(self, stage: str, url: str, body: dict) -> dict:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
                data = resp.json()
        except httpx.ConnectError as e:
            raise UpstreamGenerationError(
                f"Cannot connect to generator backend at {self._base_url}"
            ) from e
        except httpx.HTTPStatusError as e:
            raise UpstreamGenerationError(
                f"Generator backend returned HTTP {e.response.status_code} ({stage})"
            ) from e
        except httpx.TimeoutException as e:
            raise UpstreamGenerationError(
                f"Generator backend timed out after {self._timeout}s ({stage})"
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamGenerationError(
                f"Generator backend request failed ({stage}): {type(e).__name__}: {e}"
            ) from e
        except ValueError as e:
            raise UpstreamGenerationError(
                f"Generator backend returned a non-JSON body ({stage})"
            ) from e
        if not isinstance(data, dict):
            raise UpstreamGenerationError(
                f"Generator backend returned {type(data).__name__}, expected an object ({stage})"
            )
        return data

    async def generate(self, stage: str, prompt: str) -> str:
        url, body = self._build_text_request(prompt)
        logger.debug("generate stage=%s url=%s prompt_len=%d", stage, url, len(prompt))
        text = self._parse_text(await self._post(stage, url, body))
        logger.debug("generate response stage=%s len=%d", stage, len(text))
        return text

    async def generate_image(self, stage: str, prompt: str) -> bytes:
        url, body = self._build_image_request(prompt)
        logger.debug("generate_image stage=%s url=%s prompt_len=%d", stage, url, len(prompt))
        image = self._parse_image(await self._post(stage, url, body))
        logger.debug("generate_image response stage=%s bytes=%d", stage, len(image))
        return image
