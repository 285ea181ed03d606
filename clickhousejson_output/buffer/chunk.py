"""
Buffer chunks.

A chunk is an append-only sequence of formatted JSON lines sharing one
set of chunk-key values. MemoryChunk keeps the bytes in memory;
FileChunk appends them to <id>.chunk and stores its metadata next to
it in <id>.meta, written atomically (temp file + os.replace) so that a
restarted process can resume it.
"""

import json
import logging
import os
import shutil
import tempfile
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

logger = logging.getLogger(__name__)

CHUNK_SUFFIX = ".chunk"
META_SUFFIX = ".meta"


@dataclass(frozen=True)
class ChunkMetadata:
    """Chunk-key values shared by every record in a chunk."""

    timekey: Optional[int] = None
    tag: Optional[str] = None
    variables: tuple[tuple[str, Any], ...] = ()

    def to_dict(self) -> dict:
        return {
            "timekey": self.timekey,
            "tag": self.tag,
            "variables": dict(self.variables),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ChunkMetadata":
        return cls(
            timekey=data.get("timekey"),
            tag=data.get("tag"),
            variables=tuple(sorted((data.get("variables") or {}).items())),
        )


@dataclass
class MemoryChunk:
    """Chunk held entirely in memory."""

    metadata: ChunkMetadata
    chunk_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: float = field(default_factory=time.time)
    record_count: int = 0
    retry_count: int = 0
    next_retry_at: float = 0.0
    sealed: bool = False
    _data: bytearray = field(default_factory=bytearray, repr=False)

    @property
    def size(self) -> int:
        return len(self._data)

    def append(self, line: bytes) -> None:
        self._data.extend(line)
        self.record_count += 1

    def read(self) -> bytes:
        return bytes(self._data)

    def seal(self) -> None:
        self.sealed = True

    def mark_retry(self) -> None:
        pass

    def purge(self) -> None:
        self._data = bytearray()

    def evacuate(self) -> None:
        self.purge()


class FileChunk:
    """Chunk backed by a file in the buffer directory."""

    def __init__(
        self,
        directory: str,
        metadata: ChunkMetadata,
        chunk_id: Optional[str] = None,
        created_at: Optional[float] = None,
    ):
        self.directory = directory
        self.metadata = metadata
        self.chunk_id = chunk_id or uuid.uuid4().hex
        self.created_at = created_at if created_at is not None else time.time()
        self.record_count = 0
        self.retry_count = 0
        self.next_retry_at = 0.0
        self.sealed = False

        os.makedirs(directory, exist_ok=True)
        if not os.path.exists(self.path):
            open(self.path, "ab").close()
            self._save_meta()

    @property
    def path(self) -> str:
        return os.path.join(self.directory, self.chunk_id + CHUNK_SUFFIX)

    @property
    def meta_path(self) -> str:
        return os.path.join(self.directory, self.chunk_id + META_SUFFIX)

    @property
    def size(self) -> int:
        try:
            return os.path.getsize(self.path)
        except OSError:
            return 0

    def append(self, line: bytes) -> None:
        with open(self.path, "ab") as f:
            f.write(line)
            f.flush()
            os.fsync(f.fileno())
        self.record_count += 1
        self._save_meta()

    def read(self) -> bytes:
        with open(self.path, "rb") as f:
            return f.read()

    def _save_meta(self) -> None:
        """Atomically write the metadata file."""
        payload = {
            "metadata": self.metadata.to_dict(),
            "created_at": self.created_at,
            "record_count": self.record_count,
            "retry_count": self.retry_count,
            "sealed": self.sealed,
        }
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(payload, f)
            os.replace(tmp_path, self.meta_path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def seal(self) -> None:
        self.sealed = True
        self._save_meta()

    def mark_retry(self) -> None:
        self._save_meta()

    def purge(self) -> None:
        for path in (self.path, self.meta_path):
            try:
                os.unlink(path)
            except FileNotFoundError:
                pass

    def evacuate(self) -> None:
        """Move the chunk into <directory>/backup instead of deleting it."""
        backup_dir = os.path.join(self.directory, "backup")
        os.makedirs(backup_dir, exist_ok=True)
        for path in (self.path, self.meta_path):
            if os.path.exists(path):
                shutil.move(path, os.path.join(backup_dir, os.path.basename(path)))
        logger.warning("Chunk %s moved to %s", self.chunk_id, backup_dir)

    @classmethod
    def load(cls, directory: str, chunk_id: str) -> "FileChunk":
        """Re-open a chunk left behind by a previous process."""
        meta_path = os.path.join(directory, chunk_id + META_SUFFIX)
        with open(meta_path, "r") as f:
            raw = json.load(f)
        chunk = cls(
            directory,
            ChunkMetadata.from_dict(raw.get("metadata", {})),
            chunk_id=chunk_id,
            created_at=raw.get("created_at"),
        )
        chunk.record_count = raw.get("record_count", 0)
        chunk.retry_count = raw.get("retry_count", 0)
        chunk.sealed = raw.get("sealed", False)
        return chunk

    @classmethod
    def resume(cls, directory: str) -> list["FileChunk"]:
        """Load every chunk found in directory, oldest first."""
        if not os.path.isdir(directory):
            return []

        chunks = []
        for name in sorted(os.listdir(directory)):
            if not name.endswith(CHUNK_SUFFIX):
                continue
            chunk_id = name[: -len(CHUNK_SUFFIX)]
            try:
                chunks.append(cls.load(directory, chunk_id))
            except (OSError, ValueError) as e:
                logger.warning("Failed to resume chunk %s from %s: %s", chunk_id, directory, e)
        chunks.sort(key=lambda c: c.created_at)
        return chunks
