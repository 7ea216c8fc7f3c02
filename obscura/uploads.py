"""Upload adapter: turns generated image bytes into durable URLs.

Two implementations:

    LocalUploader       writes PNGs under the data directory; the app
                          serves them from /media.
    CloudinaryUploader  signed upload to the Cloudinary REST API.

Both raise UpstreamGenerationError on failure. Callers decide whether that
failure is fatal; for case images it never is.
"""

from __future__ import annotations

import hashlib
import logging
import time
from pathlib import Path
from typing import Protocol

import httpx

from obscura.errors import UpstreamGenerationError
from obscura.models import ImageRef

logger = logging.getLogger(__name__)


class Uploader(Protocol):
    async def upload(self, data: bytes, name: str, folder: str) -> ImageRef: ...

    async def delete(self, asset_id: str) -> None: ...


class LocalUploader:
    """Stores images as files under `media_dir`, addressed by `folder/name`."""

    def __init__(self, media_dir: Path, base_url: str = "/media") -> None:
        self._media_dir = media_dir
        self._base_url = base_url.rstrip("/")

    async def upload(self, data: bytes, name: str, folder: str) -> ImageRef:
        asset_id = f"{folder.strip('/')}/{name}"
        path = self._media_dir / f"{asset_id}.png"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise UpstreamGenerationError(f"Failed to store image {asset_id}: {e}") from e
        logger.info("Stored image %s (%d bytes)", asset_id, len(data))
        return ImageRef(url=f"{self._base_url}/{asset_id}.png", asset_id=asset_id)

    async def delete(self, asset_id: str) -> None:
        path = self._media_dir / f"{asset_id}.png"
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise UpstreamGenerationError(f"Failed to delete image {asset_id}: {e}") from e


class CloudinaryUploader:
    """Signed uploads to https://api.cloudinary.com/v1_1/{cloud}/image/...

    Signature: sha1 of the alphabetically sorted "key=value" pairs joined by
    "&" with the API secret appended, per Cloudinary's authenticated API.
    """

    API_BASE = "https://api.cloudinary.com/v1_1"

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        timeout: float = 60.0,
    ) -> None:
        self._endpoint = f"{self.API_BASE}/{cloud_name}/image"
        self._api_key = api_key
        self._api_secret = api_secret
        self._timeout = timeout

    def _sign(self, params: dict[str, str]) -> str:
        payload = "&".join(f"{k}={params[k]}" for k in sorted(params))
        return hashlib.sha1((payload + self._api_secret).encode()).hexdigest()

    def _signed(self, params: dict[str, str]) -> dict[str, str]:
        params = {**params, "timestamp": str(int(time.time()))}
        return {**params, "api_key": self._api_key, "signature": self._sign(params)}

    async def _post(self, action: str, data: dict[str, str], files: dict | None = None) -> dict:
        url = f"{self._endpoint}/{action}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, data=data, files=files)
                resp.raise_for_status()
                body = resp.json()
        except httpx.HTTPStatusError as e:
            raise UpstreamGenerationError(
                f"Cloudinary {action} returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise UpstreamGenerationError(f"Cloudinary {action} timed out") from e
        except httpx.HTTPError as e:
            raise UpstreamGenerationError(f"Cloudinary {action} failed: {e}") from e
        except ValueError as e:
            raise UpstreamGenerationError(f"Cloudinary {action} returned a non-JSON body") from e
        if not isinstance(body, dict):
            raise UpstreamGenerationError(f"Cloudinary {action} returned an unexpected body")
        return body

    async def upload(self, data: bytes, name: str, folder: str) -> ImageRef:
        params = self._signed({"folder": folder, "public_id": name})
        body = await self._post("upload", params, files={"file": (f"{name}.png", data, "image/png")})
        if "secure_url" not in body or "public_id" not in body:
            raise UpstreamGenerationError("Unexpected response format from Cloudinary upload")
        logger.info("Uploaded image %s", body["public_id"])
        return ImageRef(url=body["secure_url"], asset_id=body["public_id"])

    async def delete(self, asset_id: str) -> None:
        body = await self._post("destroy", self._signed({"public_id": asset_id}))
        if body.get("result") not in ("ok", "not found"):
            raise UpstreamGenerationError(f"Cloudinary destroy failed for {asset_id}: {body}")
