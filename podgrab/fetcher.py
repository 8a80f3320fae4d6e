"""Streaming downloads of media assets to local files."""

import logging
import os
import time
from pathlib import Path

import requests

from config import settings
from podgrab.archive import ArchiveLedger
from podgrab.exceptions import DownloadError
from podgrab.models import DownloadOutcome
from podgrab.naming import get_temp_path

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
RETRY_BACKOFF = [1, 2, 4]  # seconds to wait between retries


def _remove(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Could not remove %s: %s", path, e)


def download_file(url: str, output_path: Path, retries: int | None = None, timeout: int | None = None) -> int:
    """Stream ``url`` into ``output_path`` through a temporary file.

    The temporary file is renamed over the output only when the transfer
    completed and wrote at least one byte.

    Returns:
        Size of the written file in bytes.

    Raises:
        DownloadError: If every attempt fails or the result is empty.
    """
    retries = retries or settings.download_retries
    timeout = timeout or settings.request_timeout
    output_path = Path(output_path)
    temp_path = Path(get_temp_path(output_path))
    output_path.parent.mkdir(parents=True, exist_ok=True)

    last_error = None
    for attempt in range(retries):
        try:
            with requests.get(
                url,
                stream=True,
                timeout=timeout,
                headers={"User-Agent": settings.user_agent, "Accept": "*/*"},
            ) as resp:
                resp.raise_for_status()
                expected = int(resp.headers.get("content-length") or 0)
                with open(temp_path, "wb") as f:
                    for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
        except (requests.RequestException, OSError) as e:
            _remove(temp_path)
            last_error = e
            if attempt < retries - 1:
                wait = RETRY_BACKOFF[min(attempt, len(RETRY_BACKOFF) - 1)]
                logger.warning(
                    "Download of %s failed (attempt %d/%d): %s, retrying in %ds...",
                    url, attempt + 1, retries, e, wait,
                )
                time.sleep(wait)
            continue

        size = temp_path.stat().st_size
        if size == 0:
            _remove(temp_path)
            raise DownloadError("Unable to write to file. Suggestion: verify permissions")
        if expected and size != expected:
            logger.warning("Expected %d bytes from %s but received %d", expected, url, size)
        os.replace(temp_path, output_path)
        logger.debug("Wrote %s (%d bytes)", output_path, size)
        return size

    raise DownloadError(f"Download failed after {retries} attempts: {last_error}")


def download(
    url: str,
    output_path: Path,
    marker: str,
    key: str | None = None,
    ledger: ArchiveLedger | None = None,
    override: bool = False,
) -> DownloadOutcome:
    """Download a standalone asset, honouring the ledger and local files.

    Used for artifacts that need no post-processing (episode and podcast
    images). The key is recorded in the ledger once the asset is on disk.
    """
    if key and ledger and ledger.contains(key):
        logger.info("%s | Download exists in archive. Skipping...", marker)
        return DownloadOutcome.SKIPPED_ARCHIVED

    output_path = Path(output_path)
    if not override and output_path.exists():
        logger.info("%s | Download exists locally. Skipping...", marker)
        outcome = DownloadOutcome.SKIPPED_EXISTS
    else:
        download_file(url, output_path)
        logger.info("%s | Download complete", marker)
        outcome = DownloadOutcome.SUCCEEDED

    if key and ledger:
        ledger.insert(key)
    return outcome
