"""
Scan result persistence.

The orchestrator only needs two calls, ``save`` and
``find_by_transaction_id``.  Two implementations are provided:

- :class:`InMemoryScanRepository`: the default, process-local.
- :class:`JsonFileScanRepository`: one JSON document per transaction
  under a directory, written atomically.

Both hand out copies, so callers never mutate stored state by
accident, and both wrap failures in :class:`DataAccessError`.  Saves
refuse to move a scan's status backwards.
"""

from __future__ import annotations

import os
import pathlib
import re
import tempfile
import threading
from typing import Protocol

import pydantic

from cookie_scanner.models import scan
from cookie_scanner.utils import errors, logger

log = logger.create_logger("ScanRepository")

_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9-]{1,64}$")


class ScanRepository(Protocol):
    """Persistence collaborator used by the orchestrator."""

    def save(self, result: scan.ScanResult) -> None: ...

    def find_by_transaction_id(self, transaction_id: str) -> scan.ScanResult | None: ...


def check_transition(existing: scan.ScanResult | None, incoming: scan.ScanResult) -> None:
    """Raise :class:`InvalidStateError` if *incoming* would regress *existing*'s status."""
    if existing is None:
        return
    if not scan.can_transition(existing.status, incoming.status):
        raise errors.InvalidStateError(
            f"Refusing status change {existing.status} -> {incoming.status}"
            f" for transactionId={incoming.transaction_id}",
            "Scan is already finished",
        )


class InMemoryScanRepository:
    """Dict-backed repository; the default when no storage directory is set."""

    def __init__(self) -> None:
        self._results: dict[str, scan.ScanResult] = {}
        self._lock = threading.Lock()

    def save(self, result: scan.ScanResult) -> None:
        with self._lock:
            check_transition(self._results.get(result.transaction_id), result)
            self._results[result.transaction_id] = result.model_copy(deep=True)

    def find_by_transaction_id(self, transaction_id: str) -> scan.ScanResult | None:
        with self._lock:
            stored = self._results.get(transaction_id)
            return stored.model_copy(deep=True) if stored is not None else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)


class JsonFileScanRepository:
    """Stores each scan as ``<directory>/<transaction_id>.json``."""

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self._dir = pathlib.Path(directory)
        self._lock = threading.Lock()
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise errors.DataAccessError(f"Cannot create storage directory {self._dir}: {exc}") from exc

    def _path(self, transaction_id: str) -> pathlib.Path:
        if not _SAFE_ID_RE.match(transaction_id):
            raise errors.DataAccessError(f"Unsafe transaction id for file storage: {transaction_id[:80]!r}")
        return self._dir / f"{transaction_id}.json"

    def _read(self, path: pathlib.Path) -> scan.ScanResult | None:
        if not path.exists():
            return None
        try:
            return scan.ScanResult.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, pydantic.ValidationError) as exc:
            raise errors.DataAccessError(f"Failed to read {path.name}: {exc}") from exc

    def save(self, result: scan.ScanResult) -> None:
        path = self._path(result.transaction_id)
        with self._lock:
            check_transition(self._read(path), result)
            payload = result.model_dump_json(by_alias=True, indent=2)
            try:
                fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=".tmp-", suffix=".json")
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                os.replace(tmp_name, path)
            except OSError as exc:
                raise errors.DataAccessError(f"Failed to write {path.name}: {exc}") from exc
        log.debug("Scan saved", {"transactionId": result.transaction_id, "status": result.status})

    def find_by_transaction_id(self, transaction_id: str) -> scan.ScanResult | None:
        with self._lock:
            return self._read(self._path(transaction_id))


def create_repository(storage_dir: str | None) -> ScanRepository:
    """Build the file repository when *storage_dir* is set, else the in-memory one."""
    if storage_dir and storage_dir.strip():
        log.info("Using JSON file scan storage", {"directory": storage_dir})
        return JsonFileScanRepository(storage_dir.strip())
    log.info("Using in-memory scan storage")
    return InMemoryScanRepository()
