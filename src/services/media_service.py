"""Media store client for durable avatar and cover image URLs (Cloudinary)."""

import asyncio
import hashlib
import time
from pathlib import Path
from typing import Optional, Union
from uuid import uuid4

import httpx
import structlog
from fastapi import UploadFile

from src.config import Settings

logger = structlog.get_logger(__name__)

UPLOAD_CHUNK_SIZE = 1024 * 1024


def _sign_params(params: dict, api_secret: str) -> str:
    """Cloudinary request signature: sha1 of sorted params plus the secret."""
    to_sign = "&".join(f"{key}={params[key]}" for key in sorted(params))
    return hashlib.sha1(f"{to_sign}{api_secret}".encode("utf-8")).hexdigest()


def _safe_filename(filename: Optional[str]) -> str:
    """Strip directory components from a client-supplied filename."""
    name = Path(filename or "upload").name
    return name.replace(" ", "_") or "upload"


class MediaService:
    """Uploads local files to the media store and cleans up temp files.

    ``upload`` never raises for store failures: it returns None and leaves the
    decision (mandatory avatar vs optional cover) to the caller. The local
    file is removed on every exit path.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self._client: httpx.AsyncClient | None = None

    @property
    def configured(self) -> bool:
        return bool(
            self.settings.cloudinary_cloud_name
            and self.settings.cloudinary_api_key
            and self.settings.cloudinary_api_secret
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.settings.media_upload_timeout)
            )
        return self._client

    async def close(self):
        """Close HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def save_temp_upload(self, upload: UploadFile) -> Path:
        """Write an incoming multipart file to the temp directory.

        Args:
            upload: File part from the request

        Returns:
            Path of the local temporary copy
        """
        temp_dir = Path(self.settings.upload_temp_dir)
        temp_dir.mkdir(parents=True, exist_ok=True)
        path = temp_dir / f"{uuid4().hex}-{_safe_filename(upload.filename)}"

        out = await asyncio.to_thread(path.open, "wb")
        try:
            while chunk := await upload.read(UPLOAD_CHUNK_SIZE):
                await asyncio.to_thread(out.write, chunk)
        finally:
            await asyncio.to_thread(out.close)

        logger.debug("temp_upload_saved", path=str(path), content_type=upload.content_type)
        return path

    def discard(self, local_path: Optional[Union[str, Path]]) -> None:
        """Remove a local temp file if it still exists."""
        if not local_path:
            return
        try:
            Path(local_path).unlink(missing_ok=True)
        except OSError as e:
            logger.warning("temp_file_cleanup_failed", path=str(local_path), error=str(e))

    async def upload(self, local_path: Optional[Union[str, Path]]) -> Optional[str]:
        """Upload a local file and return its durable URL.

        Args:
            local_path: Path of the file to upload

        Returns:
            Secure URL of the stored asset, or None if the path is missing
            or the upload failed
        """
        if not local_path:
            return None

        path = Path(local_path)
        try:
            if not self.configured:
                logger.error("media_store_not_configured")
                return None

            params = {"timestamp": int(time.time())}
            form = {
                **params,
                "api_key": self.settings.cloudinary_api_key,
                "signature": _sign_params(params, self.settings.cloudinary_api_secret),
            }
            url = (
                f"{self.settings.cloudinary_base_url}/"
                f"{self.settings.cloudinary_cloud_name}/auto/upload"
            )

            content = await asyncio.to_thread(path.read_bytes)
            client = await self._get_client()
            response = await client.post(
                url,
                data={key: str(value) for key, value in form.items()},
                files={"file": (path.name, content)},
            )

            if response.status_code >= 400:
                logger.error(
                    "media_upload_rejected",
                    status_code=response.status_code,
                    file=path.name,
                )
                return None

            body = response.json()
            secure_url = body.get("secure_url") or body.get("url")
            if not secure_url:
                logger.error("media_upload_missing_url", file=path.name)
                return None

            logger.info("media_uploaded", file=path.name, url=secure_url)
            return secure_url

        except httpx.TimeoutException:
            logger.error("media_upload_timeout", file=path.name)
            return None
        except (httpx.HTTPError, OSError, ValueError) as e:
            logger.error(
                "media_upload_failed",
                file=path.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None
        finally:
            self.discard(path)
