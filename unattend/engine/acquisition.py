"""Artifact acquisition: download an installer into the staging area."""

import asyncio
import contextlib
import hashlib
import logging
from pathlib import Path

import requests

from unattend.errors import AcquisitionError, AcquisitionErrorKind

from .models import ArtifactSource

DOWNLOAD_ATTEMPTS = 3
DOWNLOAD_BACKOFF = 5.0
DOWNLOAD_TIMEOUT = 300
CHUNK_SIZE = 64 * 1024

_logging = logging.getLogger(__name__)


def compute_sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(block)
    return digest.hexdigest()


def _discard(partial: Path) -> None:
    with contextlib.suppress(OSError):
        partial.unlink(missing_ok=True)


def _write_failure(destination: Path, error: OSError) -> AcquisitionError:
    return AcquisitionError(
        AcquisitionErrorKind.TRANSPORT_FAILURE, f"Cannot write {destination}: {error}"
    )


class Acquirer:
    """Fetches artifacts over HTTP(S) with a size floor and bounded retries.

    A destination that already exists is trusted as-is and no request is
    made. Downloads land in a ``.part`` file and are only renamed into place
    once they pass the size floor (and the digest, when one is pinned).
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        attempts: int = DOWNLOAD_ATTEMPTS,
        backoff: float = DOWNLOAD_BACKOFF,
        timeout: float = DOWNLOAD_TIMEOUT,
        sleep=asyncio.sleep,
    ):
        self.session = session or requests.Session()
        self.attempts = max(1, attempts)
        self.backoff = backoff
        self.timeout = timeout
        self._sleep = sleep

    async def acquire(self, source: ArtifactSource, destination: Path) -> Path:
        """Stage ``source`` at ``destination`` and return the path.

        Network failures are retried; a destination that cannot be written
        fails at once.

        Raises:
            AcquisitionError: After the last attempt fails
        """
        try:
            if destination.exists():
                _logging.warning(
                    f"Using pre-staged artifact {destination} without re-validating its content"
                )
                return destination
            destination.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise _write_failure(destination, e) from e

        if not source.sha256:
            _logging.warning(
                f"No digest pinned for {source.url}; only the {source.min_size}-byte size floor is checked"
            )

        for attempt in range(1, self.attempts + 1):
            _logging.info(f"Downloading {source.url} (attempt {attempt}/{self.attempts})")
            try:
                await asyncio.to_thread(self._download, source, destination)
            except AcquisitionError as e:
                _logging.warning(f"Download attempt {attempt} failed: {e}")
                if attempt == self.attempts:
                    raise
                await self._sleep(self.backoff * attempt)
            except OSError as e:
                raise _write_failure(destination, e) from e
            else:
                _logging.info(f"Staged {destination} ({destination.stat().st_size} bytes)")
                return destination

    def _download(self, source: ArtifactSource, destination: Path) -> None:
        partial = destination.with_name(destination.name + ".part")
        try:
            response = self.session.get(source.url, stream=True, timeout=self.timeout)
            try:
                response.raise_for_status()
                with open(partial, "wb") as f:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
            finally:
                response.close()
        except requests.RequestException as e:
            _discard(partial)
            raise AcquisitionError(
                AcquisitionErrorKind.TRANSPORT_FAILURE, f"Download failed: {e}"
            ) from e
        except OSError:
            _discard(partial)
            raise

        size = partial.stat().st_size
        if size < source.min_size:
            partial.unlink()
            raise AcquisitionError(
                AcquisitionErrorKind.TOO_SMALL,
                f"Downloaded {size} bytes, expected at least {source.min_size}",
            )

        if source.sha256:
            actual = compute_sha256(partial)
            if actual.lower() != source.sha256.lower():
                partial.unlink()
                raise AcquisitionError(
                    AcquisitionErrorKind.DIGEST_MISMATCH,
                    f"SHA256 mismatch: expected {source.sha256}, got {actual}",
                )

        partial.replace(destination)


__all__ = ["Acquirer", "compute_sha256"]
