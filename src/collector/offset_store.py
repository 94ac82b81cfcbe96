"""
Durable per-(endpoint, batch) delivered-byte ledger.

Layout::

    {workspace}/{target_safe}_{service_safe}/batch-{id}

``target_safe`` is the endpoint's host, port and path, so two endpoints
never share a ledger unless their target URLs match. Each file holds the
decimal count of bytes of that batch already accepted by the sink. Files
outlive the process, so a restarted Pod for the same endpoint resumes from
them.

Writes are atomic (temp file, fsync, os.replace) and run in a worker thread.
"""

import asyncio
import logging
import os
import re
import tempfile
from pathlib import Path
from urllib.parse import urlsplit

from collector.models import Endpoint

logger = logging.getLogger(__name__)

_TARGET_UNSAFE = re.compile(r"[^A-Za-z0-9_-]")
_SERVICE_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]")


def endpoint_dir_name(endpoint: Endpoint) -> str:
    """
    Directory-safe name derived from the endpoint's target URL and service.

    Example:
        http://10.0.0.1:8666/logs/chain-42 with service chain-42
        -> 10_0_0_1_8666_logs_chain-42_chain-42
    """
    parts = urlsplit(endpoint.target_url)
    target_safe = _TARGET_UNSAFE.sub("_", f"{parts.netloc}{parts.path}")
    service_safe = _SERVICE_UNSAFE.sub("_", endpoint.service_name)
    return f"{target_safe}_{service_safe}"


class OffsetStore:
    """File-backed offset ledger rooted at a workspace directory."""

    def __init__(self, workspace_path: str | Path):
        self._root = Path(workspace_path)
        self._locks: dict[Path, asyncio.Lock] = {}
        self._last_written: dict[Path, int] = {}

    @property
    def root(self) -> Path:
        return self._root

    def work_dir(self, endpoint: Endpoint) -> Path:
        return self._root / endpoint_dir_name(endpoint)

    def path_for(self, endpoint: Endpoint, batch_id: int) -> Path:
        return self.work_dir(endpoint) / f"batch-{batch_id}"

    def has_work_dir(self, endpoint: Endpoint) -> bool:
        return self.work_dir(endpoint).is_dir()

    async def ensure_work_dir(self, endpoint: Endpoint) -> bool:
        """Create the endpoint's directory; returns True if it already existed."""
        work_dir = self.work_dir(endpoint)
        existed = await asyncio.to_thread(work_dir.is_dir)
        if not existed:
            await asyncio.to_thread(work_dir.mkdir, parents=True, exist_ok=True)
        return existed

    async def read(self, endpoint: Endpoint, batch_id: int) -> int:
        """Delivered bytes for the batch; 0 if absent or unreadable."""
        path = self.path_for(endpoint, batch_id)
        return await asyncio.to_thread(self._read_sync, path)

    async def write(self, endpoint: Endpoint, batch_id: int, delivered: int) -> None:
        """
        Durably record ``delivered`` bytes for the batch.

        Writes for one file are serialized and never move the stored value
        backwards, so concurrent acknowledgements cannot reorder on disk.
        """
        if delivered < 0:
            raise ValueError(f"delivered must be >= 0, got {delivered}")

        path = self.path_for(endpoint, batch_id)
        lock = self._locks.setdefault(path, asyncio.Lock())
        async with lock:
            if delivered <= self._last_written.get(path, -1):
                return
            await asyncio.to_thread(self._write_sync, path, delivered)
            self._last_written[path] = delivered

    def forget(self, endpoint: Endpoint) -> None:
        """Drop cached write state for an endpoint whose Pod was stopped."""
        work_dir = self.work_dir(endpoint)
        for path in [p for p in self._last_written if p.parent == work_dir]:
            self._last_written.pop(path, None)
            self._locks.pop(path, None)

    @staticmethod
    def _read_sync(path: Path) -> int:
        try:
            text = path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return 0
        except OSError as e:
            logger.warning(
                "Offset file unreadable, treating as 0",
                extra={"path": str(path), "error": str(e)},
            )
            return 0

        try:
            value = int(text)
        except ValueError:
            logger.warning(
                "Offset file corrupt, treating as 0",
                extra={"path": str(path), "error": f"invalid contents {text[:32]!r}"},
            )
            return 0

        if value < 0:
            logger.warning(
                "Offset file negative, treating as 0",
                extra={"path": str(path), "offset": value},
            )
            return 0
        return value

    @staticmethod
    def _write_sync(path: Path, delivered: int) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(str(delivered))
                f.flush()
                os.fsync(f.fileno())
            # Atomic replace
            os.replace(temp_name, path)
        except BaseException:
            try:
                os.unlink(temp_name)
            except OSError:
                pass
            raise


__all__ = ["OffsetStore", "endpoint_dir_name"]
