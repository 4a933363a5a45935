from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any
from uuid import uuid4

from roadmapper.models import Roadmap, utcnow_iso

logger = logging.getLogger(__name__)

UNSAFE_NAME_PATTERN = re.compile(r"[^a-z0-9_\-.]+")


class StoreError(RuntimeError):
    """Raised when roadmap persistence fails."""


def sanitize_name(name: str) -> str:
    sanitized = UNSAFE_NAME_PATTERN.sub("_", name.strip().lower()).strip("._-")
    return sanitized[:60].rstrip("._-")


class RoadmapStore(ABC):
    @abstractmethod
    def save(self, roadmap: Roadmap) -> Roadmap:
        """Upsert ``roadmap`` and return the stored copy (with its id assigned)."""

    @abstractmethod
    def get(self, roadmap_id: str) -> Roadmap | None:
        """Return the stored roadmap or ``None``."""

    @abstractmethod
    def remove(self, roadmap_id: str) -> bool:
        """Delete a roadmap; ``False`` when it did not exist."""

    @abstractmethod
    def list_all(self) -> list[Roadmap]:
        """Return every stored roadmap, oldest first."""

    def list_incomplete(self) -> list[Roadmap]:
        return [roadmap for roadmap in self.list_all() if roadmap.generation_state != "completed"]


class JsonRoadmapStore(RoadmapStore):
    """One JSON document per roadmap inside ``saves_dir``.

    Documents are wrapped in a versioned envelope and replaced atomically. Bare
    roadmap documents written by older versions are read as revision 1.
    """

    SCHEMA_VERSION = 1

    def __init__(self, saves_dir: Path) -> None:
        self.saves_dir = saves_dir.resolve()
        try:
            self.saves_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreError(f"Cannot create saves directory {self.saves_dir}: {exc}") from exc
        self.lock_file = self.saves_dir / ".lock"

    @contextmanager
    def _lock(self, timeout_seconds: float = 3.0):
        start = time.monotonic()
        while True:
            try:
                fd = os.open(self.lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                os.write(fd, str(os.getpid()).encode("utf-8"))
                os.close(fd)
                break
            except FileExistsError as exc:
                if time.monotonic() - start > timeout_seconds:
                    raise StoreError("Timed out waiting for the roadmap store lock.") from exc
                time.sleep(0.02)

        try:
            yield
        finally:
            try:
                self.lock_file.unlink()
            except FileNotFoundError:
                pass

    @staticmethod
    def _new_id(roadmap: Roadmap) -> str:
        base = sanitize_name(roadmap.title or roadmap.objective) or "roadmap"
        return f"{base}-{uuid4().hex[:8]}"

    def _path_for(self, roadmap_id: str) -> Path:
        file_name = sanitize_name(roadmap_id)
        if not file_name:
            raise StoreError(f"Invalid roadmap id: {roadmap_id!r}")
        return self.saves_dir / f"{file_name}.json"

    def _read_envelope(self, path: Path) -> dict[str, Any] | None:
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except json.JSONDecodeError:
            logger.warning("Skipping unreadable roadmap document %s", path)
            return None
        except OSError as exc:
            raise StoreError(f"Cannot read {path}: {exc}") from exc

        if (
            isinstance(raw, dict)
            and "schema_version" in raw
            and "data" in raw
            and "revision" in raw
        ):
            data = raw.get("data")
            if not isinstance(data, dict):
                return None
            try:
                schema_version = int(raw.get("schema_version") or self.SCHEMA_VERSION)
                revision = int(raw.get("revision") or 1)
            except (TypeError, ValueError):
                logger.warning("Skipping roadmap document with a malformed envelope: %s", path)
                return None
            return {
                "schema_version": schema_version,
                "revision": revision,
                "updated_at": raw.get("updated_at") or utcnow_iso(),
                "data": data,
            }
        if not isinstance(raw, dict):
            return None
        return {
            "schema_version": self.SCHEMA_VERSION,
            "revision": 1,
            "updated_at": utcnow_iso(),
            "data": raw,
        }

    def _iter_documents(self) -> list[tuple[Path, dict[str, Any]]]:
        documents: list[tuple[Path, dict[str, Any]]] = []
        for path in sorted(self.saves_dir.glob("*.json")):
            envelope = self._read_envelope(path)
            if envelope is not None:
                documents.append((path, envelope))
        return documents

    def _locate(self, roadmap_id: str) -> Path | None:
        direct = self._path_for(roadmap_id)
        if direct.exists():
            return direct
        # Older documents are named after the title rather than the id.
        for path, envelope in self._iter_documents():
            data = envelope["data"]
            if str(data.get("id")) == roadmap_id or data.get("sanitizedName") == roadmap_id:
                return path
        return None

    def _write_atomic(self, path: Path, payload: dict[str, Any]) -> None:
        serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        fd, temp_name = tempfile.mkstemp(prefix=".roadmap-", suffix=".tmp", dir=self.saves_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(serialized)
            os.replace(temp_name, path)
        except OSError:
            try:
                os.unlink(temp_name)
            except OSError:
                pass
            raise

    def save(self, roadmap: Roadmap) -> Roadmap:
        data = roadmap.to_dict()
        if not data.get("id"):
            data["id"] = self._new_id(roadmap)
        data["updatedAt"] = utcnow_iso()
        roadmap_id = str(data["id"])

        try:
            with self._lock():
                path = self._locate(roadmap_id) or self._path_for(roadmap_id)
                current = self._read_envelope(path)
                revision = int(current["revision"]) + 1 if current else 1
                self._write_atomic(
                    path,
                    {
                        "schema_version": self.SCHEMA_VERSION,
                        "revision": revision,
                        "updated_at": data["updatedAt"],
                        "data": data,
                    },
                )
        except OSError as exc:
            raise StoreError(f"Failed to save roadmap {roadmap_id}: {exc}") from exc

        logger.debug("Saved roadmap %s (revision %d)", roadmap_id, revision)
        return Roadmap.from_dict(data)

    def get(self, roadmap_id: str) -> Roadmap | None:
        path = self._locate(roadmap_id)
        if path is None:
            return None
        envelope = self._read_envelope(path)
        if envelope is None:
            return None
        return Roadmap.from_dict(envelope["data"])

    def revision(self, roadmap_id: str) -> int:
        path = self._locate(roadmap_id)
        envelope = self._read_envelope(path) if path else None
        return int(envelope["revision"]) if envelope else 0

    def remove(self, roadmap_id: str) -> bool:
        try:
            with self._lock():
                path = self._locate(roadmap_id)
                if path is None:
                    return False
                path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StoreError(f"Failed to delete roadmap {roadmap_id}: {exc}") from exc
        logger.info("Deleted roadmap %s", roadmap_id)
        return True

    def list_all(self) -> list[Roadmap]:
        roadmaps = [Roadmap.from_dict(envelope["data"]) for _, envelope in self._iter_documents()]
        return sorted(roadmaps, key=lambda roadmap: roadmap.created_at)
