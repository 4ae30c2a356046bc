"""Product image downloads into per-product upload folders."""

import os
import re
import time
from pathlib import Path
from typing import List, Optional, Sequence
from urllib.parse import urlparse

import requests  # type: ignore[import-untyped]

from ingest.config import (
    IMAGE_TIMEOUT,
    MAX_IMAGES_PER_PRODUCT,
    PRODUCT_IMAGE_SUBDIR,
    UPLOAD_DIR,
    UPLOAD_URL_PREFIX,
    USER_AGENT,
)
from ingest.exceptions import ImageDownloadError
from ingest.logging_config import get_logger
from ingest.models import StoredImage

__all__ = ["sanitize_folder_name", "image_extension", "create_session", "ImageDownloader"]

logger = get_logger("images")

FOLDER_NAME_MAX_LENGTH = 50
CHUNK_SIZE = 64 * 1024
DEFAULT_EXTENSION = ".jpg"


def sanitize_folder_name(product_name: str) -> str:
    """Folder name for a product: alphanumerics only, lower-cased, capped."""
    return re.sub(r"[^a-z0-9]", "_", product_name, flags=re.IGNORECASE).lower()[:FOLDER_NAME_MAX_LENGTH]


def image_extension(url: str) -> str:
    ext = os.path.splitext(urlparse(url).path)[1].lower()
    return ext if re.fullmatch(r"\.[a-z0-9]{1,5}", ext) else DEFAULT_EXTENSION


def create_session() -> requests.Session:
    """Session with connection pooling and browser-like headers."""
    session = requests.Session()
    session.headers.update({"User-Agent": USER_AGENT})
    session.headers.setdefault("Accept-Encoding", "gzip, deflate")
    return session


class ImageDownloader:
    """Downloads product images, skipping files already on disk.

    Files land at ``{upload_dir}/products/{folder}/image_{index}{ext}`` and are
    referenced as ``/uploads/products/{folder}/image_{index}{ext}``. In
    update mode existing files are fetched again and overwritten.
    """

    def __init__(
        self,
        upload_dir: str = UPLOAD_DIR,
        update_images: bool = False,
        session: Optional[requests.Session] = None,
        timeout: float = IMAGE_TIMEOUT,
        max_images: int = MAX_IMAGES_PER_PRODUCT,
        clock=time.monotonic,
    ) -> None:
        self.upload_dir = Path(upload_dir)
        self.update_images = update_images
        self.session = session or create_session()
        self.timeout = timeout
        self.max_images = max_images
        self._clock = clock

    def download(self, url: str, product_name: str, index: int) -> StoredImage:
        """Store one image and return its reference.

        Raises:
            ImageDownloadError: On non-200 status, network error, timeout or write error
        """
        folder = sanitize_folder_name(product_name)
        filename = f"image_{index}{image_extension(url)}"
        target_dir = self.upload_dir / PRODUCT_IMAGE_SUBDIR / folder
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / filename

        ref = StoredImage(
            url=f"{UPLOAD_URL_PREFIX}/{folder}/{filename}",
            alt=f"{product_name} - Image {index + 1}",
            is_primary=index == 0,
        )

        if target.exists() and not self.update_images:
            logger.debug(f"Image exists, skipping download: {target}")
            return ref

        self._fetch_to(url, target)
        logger.debug(f"Downloaded image: {url} -> {target}")
        return ref

    def _fetch_to(self, url: str, target: Path) -> None:
        deadline = self._clock() + self.timeout
        try:
            with self.session.get(url, stream=True, timeout=self.timeout) as resp:
                if resp.status_code != 200:
                    raise ImageDownloadError(f"HTTP {resp.status_code} for {url}")
                with open(target, "wb") as f:
                    for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                        if self._clock() > deadline:
                            raise ImageDownloadError(f"Timed out after {self.timeout}s: {url}")
                        if chunk:
                            f.write(chunk)
        except ImageDownloadError:
            target.unlink(missing_ok=True)
            raise
        except (requests.exceptions.RequestException, OSError) as e:
            target.unlink(missing_ok=True)
            raise ImageDownloadError(f"Failed to download {url}: {e}") from e

    def download_all(self, urls: Sequence[str], product_name: str) -> List[StoredImage]:
        """Download up to ``max_images`` images; failed ones are left out.

        The first successfully stored image is the primary one.
        """
        stored: List[StoredImage] = []
        for index, url in enumerate(urls[: self.max_images]):
            try:
                stored.append(self.download(url, product_name, index))
            except ImageDownloadError as e:
                logger.warning(f"Image {index + 1} for '{product_name}' failed: {e}")
        for position, image in enumerate(stored):
            image.is_primary = position == 0
        return stored
