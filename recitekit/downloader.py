"""
Media downloader for recitekit.

Streams a remote audio file to a temporary location on local disk. The
content cache moves the temporary file into place once the download is
complete, so a failed or interrupted download never leaves a partial file at
the cached path.
"""

import logging
import os
import tempfile
from typing import Optional

import requests

from .exceptions import CacheIOError, TransportError
from .utils import url_extension

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class MediaDownloader:
    """
    Durable byte-stream download primitive.

    Downloads are written to ``download_dir`` (the system temp directory by
    default) under a unique name that keeps the URL's file extension.
    """

    def __init__(
        self,
        download_dir: Optional[str] = None,
        timeout: int = 30,
        verify_ssl: bool = True,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize media downloader.

        Args:
            download_dir: Directory for temporary files (default: system temp dir)
            timeout: Request timeout in seconds (default: 30)
            verify_ssl: Whether to verify SSL certificates (default: True)
            session: Optional requests session to reuse connections
        """
        self.download_dir = download_dir
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self.session = session or requests.Session()

    def download(self, url: str) -> str:
        """
        Download ``url`` to a new temporary file.

        Args:
            url: Remote audio URL

        Returns:
            Path of the temporary file holding the complete response body

        Raises:
            TransportError: If the request fails or returns a non-2xx status
            CacheIOError: If the temporary file cannot be written
        """
        if self.download_dir:
            os.makedirs(self.download_dir, exist_ok=True)

        fd, temp_path = tempfile.mkstemp(
            prefix="recitekit-",
            suffix=f".{url_extension(url)}.part",
            dir=self.download_dir,
        )
        logger.info(f"Downloading audio from: {url[:100]}")

        try:
            with os.fdopen(fd, "wb") as f:
                with self.session.get(url, stream=True, timeout=self.timeout, verify=self.verify_ssl) as response:
                    response.raise_for_status()
                    written = 0
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
                            written += len(chunk)
        except requests.RequestException as e:
            _discard(temp_path)
            logger.error(f"Failed to download audio from {url[:100]}: {str(e)}")
            raise TransportError(f"Audio download failed: {str(e)}") from e
        except OSError as e:
            _discard(temp_path)
            logger.error(f"Failed to write downloaded audio: {str(e)}")
            raise CacheIOError(f"Audio save failed: {str(e)}") from e

        logger.info(f"Downloaded {written} bytes to: {temp_path}")
        return temp_path


def _discard(path: str) -> None:
    try:
        os.remove(path)
    except OSError:
        logger.debug(f"Temporary file already gone: {path}")
