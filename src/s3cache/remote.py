"""Remote object store access and the cached fetch workflow.

The cache itself never touches the network. This module pairs it with a
remote store client: ``CloudFilesStore`` talks to S3/GCS/HTTP through
cloudfiles, and ``fetch_cached`` implements the lookup, download and store
sequence used by data readers.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Tuple, Union

from typing_extensions import Protocol

from s3cache.cache.exceptions import CacheError, CacheIOError, InvalidArgumentError
from s3cache.cache.manager import CacheManager
from s3cache.cache.validation import etags_match
from s3cache.utils import get_optimal_temp_dir, is_cloud_path, split_uri

logger = logging.getLogger(__name__)

DOWNLOAD_ATTEMPTS = 3


class RemoteObjectNotFound(CacheError):
    """Raised when the remote store has no object at a URI."""

    pass


class RemoteObjectChanged(CacheError):
    """Raised when a remote object keeps being replaced while it is downloaded."""

    pass


class RemoteStore(Protocol):
    """Interface of a remote object store client."""

    def download(self, uri: str, dest_dir: Path) -> Tuple[Path, Optional[str]]:
        """Download an object into dest_dir, returning (local path, etag)."""
        ...

    def head_object(self, uri: str) -> Optional[str]:
        """Return the object's current ETag without fetching its content."""
        ...


class CloudFilesStore:
    """Remote store backed by cloudfiles (s3://, gs://, https://, ...).

    Examples:
        >>> store = CloudFilesStore()
        >>> etag = store.head_object('s3://bucket/data/file.nc')
    """

    def __init__(self, **cloudfiles_kwargs):
        """Initialize store.

        Args:
            **cloudfiles_kwargs: Passed to every CloudFiles instance
                (e.g., secrets, progress)
        """
        self.cloudfiles_kwargs = cloudfiles_kwargs

    def _open(self, uri: str):
        from cloudfiles import CloudFiles

        if not is_cloud_path(uri):
            raise InvalidArgumentError(f"Not a remote object URI: {uri!r}")
        dir_path, filename = split_uri(uri)
        return CloudFiles(dir_path, **self.cloudfiles_kwargs), filename

    @staticmethod
    def _etag(cf, uri: str, filename: str) -> Optional[str]:
        headers = cf.head(filename)
        if headers is None:
            raise RemoteObjectNotFound(f"No remote object at {uri}")
        return headers.get("ETag")

    def head_object(self, uri: str) -> Optional[str]:
        """Fetch the ETag of a remote object.

        Raises:
            RemoteObjectNotFound: If the object does not exist
        """
        cf, filename = self._open(uri)
        return self._etag(cf, uri, filename)

    def download(self, uri: str, dest_dir: Union[str, Path]) -> Tuple[Path, Optional[str]]:
        """Download a remote object to a new file in dest_dir.

        The ETag is read before and after the content. If the object was
        replaced in between, the download is retried so that the returned
        ETag always describes the returned bytes.

        Returns:
            (path to the downloaded file, ETag or None)

        Raises:
            RemoteObjectNotFound: If the object does not exist
            RemoteObjectChanged: If the object kept changing during every attempt
        """
        cf, filename = self._open(uri)

        for attempt in range(1, DOWNLOAD_ATTEMPTS + 1):
            etag = self._etag(cf, uri, filename)
            content = cf.get(filename)
            if content is None:
                raise RemoteObjectNotFound(f"No remote object at {uri}")
            if etags_match(etag, self._etag(cf, uri, filename)):
                break
            logger.warning(
                f"{uri} changed during download (attempt {attempt}/{DOWNLOAD_ATTEMPTS})"
            )
        else:
            raise RemoteObjectChanged(
                f"{uri} changed during each of {DOWNLOAD_ATTEMPTS} download attempts"
            )

        fd, temp_name = tempfile.mkstemp(prefix="s3cache-", suffix=f"-{filename}", dir=dest_dir)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(content)
        except OSError:
            os.unlink(temp_name)
            raise

        return Path(temp_name), etag


def fetch_cached(
    uri: str,
    manager: CacheManager,
    store: RemoteStore,
    revalidate: bool = True,
) -> Path:
    """Return a local path for a remote object, downloading only on a miss.

    Args:
        uri: Remote object identifier
        manager: Cache to consult and populate
        store: Remote store client
        revalidate: Ask the store for the current ETag (HEAD request) before
            trusting a cached copy. Ignored when ``validate_etag`` is off.

    Returns:
        Path to the cached file, or to the downloaded file when caching is
        disabled (the caller then owns that file)
    """
    config = manager.config

    remote_etag = None
    if config.enabled and config.validate_etag and revalidate:
        remote_etag = store.head_object(uri)

    lookup = manager.get(uri, remote_etag=remote_etag)
    if lookup.hit:
        return lookup.local_path

    local_file, etag = store.download(uri, get_optimal_temp_dir())
    logger.debug(f"Downloaded {uri} to {local_file}")

    if not config.enabled:
        return local_file

    try:
        entry = manager.put(uri, local_file, etag=etag or remote_etag, move=True)
    except CacheIOError as e:
        if not Path(local_file).exists():
            raise
        # Caching failed but the download is intact; hand it to the caller
        logger.warning(f"Could not cache {uri}, using downloaded copy: {e}")
        return local_file

    return manager.root / entry.local_file
