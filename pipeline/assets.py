"""
Download product images into local storage.

Files are named after the owning product (lossy slug) rather than by content
hash, so an image that is already on disk is never fetched again. Two products
whose titles slug to the same name share one file; that is a known limitation.
"""

import logging
import re
import unicodedata
import uuid
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import aiofiles
import aiofiles.os
import httpx

from core.config import settings
from core.exceptions import AssetFailure

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = ("jpg", "jpeg", "png")
DEFAULT_EXTENSION = "jpg"
MAX_SLUG_LENGTH = 50


def slugify(value: str, separator: str = "_") -> str:
    """ASCII, lower-case slug with runs of non-alphanumerics collapsed."""
    value = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    value = value.lower().replace("@", f"{separator}at{separator}")
    value = re.sub(r"[^a-z0-9]+", separator, value)
    return value.strip(separator)


def extension_from_url(url: str) -> str:
    suffix = Path(urlparse(url).path).suffix.lstrip(".").lower()
    if suffix in ALLOWED_EXTENSIONS:
        return suffix
    return DEFAULT_EXTENSION


def asset_filename(owner_label: str, url: str) -> str:
    stem = slugify(owner_label)[:MAX_SLUG_LENGTH] or "product"
    return f"{stem}.{extension_from_url(url)}"


class AssetIngestor:
    """
    Fetch, validate and persist remote images.

    ``ingest`` never raises: every failure path logs and returns None so the
    caller can fall back to the remote reference.
    """

    def __init__(
        self,
        storage_dir: Optional[str] = None,
        public_prefix: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.storage_dir = Path(storage_dir or settings.ASSET_STORAGE_DIR)
        self.public_prefix = (public_prefix or settings.ASSET_PUBLIC_PREFIX).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.ASSET_TIMEOUT
        self._client = client

    def public_reference(self, filename: str) -> str:
        return f"{self.public_prefix}/{filename}"

    async def ingest(self, url: str, owner_label: str) -> Optional[str]:
        """
        Return the local reference for ``url``, downloading it if needed.

        Args:
            url: Remote image URL
            owner_label: Product title the filename is derived from

        Returns:
            Public reference such as ``/storage/products/mens_cotton_jacket.jpg``,
            or None when the image could not be fetched or stored
        """
        try:
            filename = asset_filename(owner_label, url)
            path = self.storage_dir / filename

            if await aiofiles.os.path.exists(path):
                logger.info(f"Image already exists: {filename}")
                return self.public_reference(filename)

            body = await self._download(url, owner_label)
            await self._store(path, body)

            logger.info(f"Image downloaded and stored: {filename} ({len(body)} bytes)")
            return self.public_reference(filename)

        except AssetFailure as e:
            logger.warning(e.message, extra={"error_context": e.context})
            return None
        except Exception as e:
            logger.error(f"Error downloading image {url} for {owner_label!r}: {e}")
            return None

    async def _download(self, url: str, owner_label: str) -> bytes:
        if self._client is not None:
            response = await self._client.get(url, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                response = await client.get(url)

        if not response.is_success:
            raise AssetFailure(
                f"Failed to download image: {url}",
                context={"status_code": response.status_code, "product_title": owner_label}
            )

        content_type = response.headers.get("Content-Type", "")
        if not content_type.lower().startswith("image/"):
            raise AssetFailure(
                f"Invalid image content type: {content_type or 'missing'}",
                context={"url": url, "product_title": owner_label}
            )

        return response.content

    async def _store(self, path: Path, body: bytes) -> None:
        # Only complete files ever appear under the final name
        partial = path.with_name(f".{path.name}.{uuid.uuid4().hex}.part")
        try:
            await aiofiles.os.makedirs(path.parent, exist_ok=True)
            async with aiofiles.open(partial, "wb") as f:
                await f.write(body)
            await aiofiles.os.replace(partial, path)
        except OSError as e:
            raise AssetFailure(
                f"Failed to store image {path.name}",
                context={"path": str(path)},
                original_exception=e
            )
        finally:
            await self._discard(partial)

    @staticmethod
    async def _discard(partial: Path) -> None:
        try:
            if await aiofiles.os.path.exists(partial):
                await aiofiles.os.remove(partial)
        except OSError as e:
            logger.warning(f"Could not remove partial image {partial.name}: {e}")
