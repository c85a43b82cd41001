import hashlib
import time
from typing import Any, Dict, Protocol

import httpx
from fastapi import Request
from loguru import logger

from skillify.core.enum import MediaKind
from skillify.core.errors import UpstreamError
from skillify.core.settings import settings


class MediaHostError(UpstreamError):
    pass


class MediaHost(Protocol):
    async def upload_image(self, content: bytes, folder: str, filename: str = "") -> Dict[str, str]: ...

    async def upload_video(self, content: bytes, folder: str, filename: str = "") -> Dict[str, str]: ...

    async def delete(self, public_id: str, kind: MediaKind) -> None: ...


class CloudinaryService:
    """
    Cloudinary upload API over httpx (signed requests).
    Upload returns {"url", "public_id"}; delete takes the public_id and the
    resource kind (image / video).
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        cloud_name: str | None = None,
        api_key: str | None = None,
        api_secret: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ):
        self.http = http
        self.cloud_name = cloud_name or settings.CLOUDINARY_CLOUD_NAME
        self.api_key = api_key or settings.CLOUDINARY_API_KEY
        self.api_secret = api_secret or settings.CLOUDINARY_API_SECRET
        self.base_url = (base_url or settings.CLOUDINARY_BASE_URL).rstrip("/")
        self.default_timeout = timeout or settings.CLOUDINARY_TIMEOUT

    # =========================================================
    # INTERNAL
    # =========================================================
    def _sign(self, params: Dict[str, Any]) -> str:
        to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params) if params[k] != "")
        return hashlib.sha1(f"{to_sign}{self.api_secret}".encode("utf-8")).hexdigest()

    def _signed(self, params: Dict[str, Any]) -> Dict[str, Any]:
        params = {**params, "timestamp": int(time.time())}
        return {**params, "signature": self._sign(params), "api_key": self.api_key}

    def _url(self, kind: MediaKind, action: str) -> str:
        return f"{self.base_url}/{self.cloud_name}/{kind.value}/{action}"

    async def _upload(
        self, kind: MediaKind, content: bytes, folder: str, filename: str
    ) -> Dict[str, str]:
        try:
            resp = await self.http.post(
                self._url(kind, "upload"),
                data=self._signed({"folder": folder}),
                files={"file": (filename or "upload", content)},
                timeout=self.default_timeout,
            )
        except httpx.HTTPError as e:
            raise MediaHostError(f"Media upload failed: {e}") from e

        if resp.status_code != 200:
            raise MediaHostError(f"Media upload failed: {resp.status_code} {resp.text}")

        data = resp.json()
        return {"url": data["secure_url"], "public_id": data["public_id"]}

    # =========================================================
    # PUBLIC
    # =========================================================
    async def upload_image(self, content: bytes, folder: str, filename: str = "") -> Dict[str, str]:
        return await self._upload(MediaKind.IMAGE, content, folder, filename)

    async def upload_video(self, content: bytes, folder: str, filename: str = "") -> Dict[str, str]:
        return await self._upload(MediaKind.VIDEO, content, folder, filename)

    async def delete(self, public_id: str, kind: MediaKind) -> None:
        try:
            resp = await self.http.post(
                self._url(kind, "destroy"),
                data=self._signed({"public_id": public_id}),
                timeout=self.default_timeout,
            )
        except httpx.HTTPError as e:
            raise MediaHostError(f"Media delete failed for {public_id}: {e}") from e

        if resp.status_code != 200:
            raise MediaHostError(
                f"Media delete failed for {public_id}: {resp.status_code} {resp.text}"
            )
        result = resp.json().get("result")
        if result not in ("ok", "not found"):
            raise MediaHostError(f"Media delete for {public_id} returned {result}")


async def discard_assets(media: MediaHost, assets: list[tuple[str, MediaKind]]) -> None:
    """Best-effort removal of uploaded assets; failures are only logged."""
    for public_id, kind in assets:
        try:
            await media.delete(public_id, kind)
        except Exception as e:
            logger.warning(f"Could not delete {kind.value} asset {public_id}: {e}")


def get_media_host(request: Request) -> MediaHost:
    return request.app.state.media_host
