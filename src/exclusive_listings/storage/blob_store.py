"""Blob storage for uploaded media files."""

import logging
import threading
from collections.abc import Callable
from pathlib import Path, PurePosixPath
from typing import Protocol
from urllib.parse import quote, unquote

import httpx

from exclusive_listings.config import StorageSettings
from exclusive_listings.models.pydantic_models import BlobStatus

logger = logging.getLogger(__name__)

# Called with the public URL of a file removed outside the application
DeletionListener = Callable[[str], None]

# Give up on de-duplicating a filename after this many suffixes
MAX_UNIQUE_SUFFIX = 10_000


class BlobStore(Protocol):
    """Storage the media service writes files to and checks for drift."""

    def put(self, path: str, data: bytes, content_type: str) -> str:
        """Store bytes under a relative path and return the public URL."""
        ...

    def read(self, url: str) -> bytes | None:
        """Return stored bytes, or None if the file is gone or foreign."""
        ...

    def exists(self, url: str, timeout: float | None = None) -> BlobStatus:
        """Report whether the file behind a URL is still there."""
        ...

    def delete(self, url: str) -> bool:
        """Delete a file. Returns False if it was already gone."""
        ...

    def owns(self, url: str) -> bool:
        """Whether the URL points into this store."""
        ...

    def subscribe(self, listener: DeletionListener) -> None:
        """Register a listener for files deleted outside the application."""
        ...

    def notify_deleted(self, url: str) -> bool:
        """Report an out-of-band deletion. Returns False for foreign URLs."""
        ...

    def close(self) -> None:
        """Release connections held by the store."""
        ...


class LocalBlobStore:
    """Filesystem blob store published under a public base URL.

    Files live under ``root``; ``<base_url>/<relative path>`` is the URL
    handed out for each stored file.
    """

    def __init__(self, root: Path, base_url: str) -> None:
        """Initialize the store.

        Args:
            root: Directory holding stored files.
            base_url: Public URL that maps onto root.
        """
        self._root = Path(root)
        self._base_url = base_url.rstrip("/")
        self._listeners: list[DeletionListener] = []
        self._listeners_lock = threading.Lock()

    @property
    def root(self) -> Path:
        """Directory holding stored files."""
        return self._root

    @property
    def base_url(self) -> str:
        """Public URL of the root directory."""
        return self._base_url

    # ========== PATHS ==========

    def url_for(self, relative_path: str) -> str:
        """Public URL of a relative storage path."""
        return f"{self._base_url}/{quote(relative_path.lstrip('/'))}"

    def owns(self, url: str) -> bool:
        return url.startswith(self._base_url + "/")

    def path_for(self, url: str) -> Path | None:
        """Map a public URL back to a file inside root.

        Returns:
            Filesystem path, or None for URLs outside this store.
        """
        if not self.owns(url):
            return None
        relative = PurePosixPath(unquote(url[len(self._base_url) + 1 :]))
        if relative.is_absolute() or ".." in relative.parts:
            return None
        return self._root.joinpath(*relative.parts)

    # ========== WRITE ==========

    def put(self, path: str, data: bytes, content_type: str) -> str:
        """Write bytes under a relative path, de-duplicating the filename.

        An existing ``name.ext`` makes the store try ``name-1.ext``,
        ``name-2.ext`` and so on.

        Args:
            path: Relative path such as ``exclusive-listings/2024/05/x.webp``.
            data: File content.
            content_type: MIME type of the content.

        Returns:
            Public URL of the stored file.

        Raises:
            OSError: If the file cannot be written.
        """
        relative = PurePosixPath(path.lstrip("/"))
        directory = self._root.joinpath(*relative.parent.parts)
        directory.mkdir(parents=True, exist_ok=True)

        stem, suffix = relative.stem, relative.suffix
        for counter in range(MAX_UNIQUE_SUFFIX):
            name = f"{stem}{suffix}" if counter == 0 else f"{stem}-{counter}{suffix}"
            target = directory / name
            try:
                with open(target, "xb") as f:
                    f.write(data)
            except FileExistsError:
                continue
            stored = str(relative.parent / name)
            logger.debug("Stored %s (%s, %d bytes)", stored, content_type, len(data))
            return self.url_for(stored)

        raise OSError(f"No free filename for {path}")

    def read(self, url: str) -> bytes | None:
        """Read the file behind a URL.

        Returns:
            File content, or None if the file is missing or the URL is not
            managed by this store.

        Raises:
            OSError: If the file exists but cannot be read.
        """
        path = self.path_for(url)
        if path is None:
            return None
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def delete(self, url: str) -> bool:
        """Delete the file behind a URL.

        Returns:
            True if a file was removed, False if it was already missing or
            the URL is not managed by this store.

        Raises:
            OSError: If the file exists but cannot be removed.
        """
        path = self.path_for(url)
        if path is None:
            logger.warning("Refusing to delete foreign URL %s", url)
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    # ========== EXISTS ==========

    def exists(self, url: str, timeout: float | None = None) -> BlobStatus:
        """Check the filesystem for the file behind a URL."""
        path = self.path_for(url)
        if path is None:
            return BlobStatus.UNKNOWN
        try:
            return BlobStatus.PRESENT if path.is_file() else BlobStatus.MISSING
        except OSError:
            logger.exception("Could not stat %s", path)
            return BlobStatus.UNKNOWN

    # ========== EVENTS ==========

    def subscribe(self, listener: DeletionListener) -> None:
        with self._listeners_lock:
            self._listeners.append(listener)

    def notify_deleted(self, url: str) -> bool:
        """Tell listeners that a stored file was deleted out of band.

        Listeners run synchronously in registration order.

        Args:
            url: Public URL of the removed file.

        Returns:
            True if the URL belongs to this store and listeners were called.
        """
        if not self.owns(url):
            return False
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(url)
        return True

    def close(self) -> None:
        """Nothing to release for plain files."""


class HttpBlobStore(LocalBlobStore):
    """Local blob store that checks existence through the public URL.

    Useful when files are served by a CDN or web server whose view of the
    files is what matters to visitors.
    """

    def __init__(
        self,
        root: Path,
        base_url: str,
        client: httpx.Client | None = None,
    ) -> None:
        super().__init__(root, base_url)
        self._client = client or httpx.Client(follow_redirects=True)

    def exists(self, url: str, timeout: float | None = None) -> BlobStatus:
        """HEAD the URL: 2xx present, 404/410 missing, anything else unknown."""
        try:
            resp = self._client.head(url, timeout=timeout)
        except httpx.TimeoutException:
            logger.warning("Timed out checking %s", url)
            return BlobStatus.UNKNOWN
        except httpx.RequestError as e:
            # DNS errors, connection refused, TLS, etc.
            logger.warning("Could not check %s: %s", url, e)
            return BlobStatus.UNKNOWN

        if 200 <= resp.status_code < 300:
            return BlobStatus.PRESENT
        if resp.status_code in (404, 410):
            return BlobStatus.MISSING
        return BlobStatus.UNKNOWN

    def close(self) -> None:
        """Close the HTTP client used for checks."""
        self._client.close()


def create_blob_store(settings: StorageSettings) -> LocalBlobStore:
    """Build the blob store configured in settings."""
    if settings.existence_check == "http":
        return HttpBlobStore(settings.root, settings.base_url)
    return LocalBlobStore(settings.root, settings.base_url)
