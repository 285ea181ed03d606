"""
Buffered output host.

Thread-safe buffer that groups formatted records into chunks by chunk
key, flushes ready chunks on a periodic timer and acts on the outcome
the output reports for each chunk. Retryable chunks stay queued with
exponential backoff; unrecoverable ones are evacuated.
"""

import json
import logging
import math
import threading
import time
from typing import Any, Mapping, Optional, Union

from clickhousejson_output.buffer.chunk import ChunkMetadata, FileChunk, MemoryChunk
from clickhousejson_output.buffer.config import BufferConfig
from clickhousejson_output.clickhouse.sender import SendOutcome, SendResult

logger = logging.getLogger(__name__)

Chunk = Union[MemoryChunk, FileChunk]


class BufferedOutput:
    """
    Host-side buffer in front of a ClickHouseJSONOutput.

    submit() formats and stages records; flush() hands ready chunks to
    output.write() outside the lock; close() stops the timer and drains
    the buffer when flush_at_shutdown is set.
    """

    def __init__(self, output, config: Optional[BufferConfig] = None, start_timer: bool = True):
        """
        Args:
            output: Configured output exposing format(), write() and
                buffer_config.
            config: Buffer settings. Defaults to output.buffer_config.
            start_timer: Run the periodic flush timer.
        """
        self.output = output
        self.config = config or output.buffer_config
        self.config.validate()

        self._staged: dict[ChunkMetadata, Chunk] = {}
        self._queue: list[Chunk] = []
        self._lock = threading.Lock()
        self._flush_timer: Optional[threading.Timer] = None
        self._closed = False

        self._total_flushed = 0
        self._total_retried = 0
        self._total_dropped = 0
        self._total_evacuated = 0

        if self.config.type == "file":
            self._resume()
        if start_timer:
            self._schedule_flush()

    def _resume(self) -> None:
        """Queue chunks a previous process left in the buffer directory."""
        chunks = FileChunk.resume(self.config.path)
        for chunk in chunks:
            chunk.sealed = True
        self._queue.extend(chunks)
        if chunks:
            logger.info("Resumed %d chunks from %s", len(chunks), self.config.path)

    def _schedule_flush(self) -> None:
        """Schedule the next periodic flush."""
        if self._flush_timer is not None:
            self._flush_timer.cancel()
        self._flush_timer = threading.Timer(self.config.flush_thread_interval, self._periodic_flush)
        self._flush_timer.daemon = True
        self._flush_timer.start()

    def _periodic_flush(self) -> None:
        """Timer callback: flush then reschedule."""
        try:
            self.flush()
        except Exception:
            logger.exception("Periodic flush failed")
        if not self._closed:
            self._schedule_flush()

    def metadata_for(self, tag: str, timestamp: float, record: Mapping[str, Any]) -> ChunkMetadata:
        """Chunk-key values for one record."""
        timekey = None
        chunk_tag = None
        variables = []
        for key in self.config.chunk_keys:
            if key == "time":
                timekey = int(math.floor(timestamp / self.config.timekey) * self.config.timekey)
            elif key == "tag":
                chunk_tag = tag
            else:
                value = record.get(key)
                if isinstance(value, (dict, list)):
                    value = json.dumps(value, sort_keys=True)
                variables.append((key, value))
        return ChunkMetadata(timekey=timekey, tag=chunk_tag, variables=tuple(sorted(variables)))

    def _new_chunk(self, metadata: ChunkMetadata) -> Chunk:
        if self.config.type == "file":
            return FileChunk(self.config.path, metadata)
        return MemoryChunk(metadata)

    def submit(self, tag: str, timestamp: float, record: Mapping[str, Any]) -> bool:
        """Format and buffer one record. Returns False if it could not be formatted."""
        try:
            line = self.output.format(tag, timestamp, record)
        except (TypeError, ValueError) as e:
            logger.error("Dropping unformattable record (tag=%s): %s", tag, e)
            return False

        metadata = self.metadata_for(tag, timestamp, record)
        with self._lock:
            chunk = self._staged.get(metadata)
            if (
                chunk is not None
                and chunk.record_count > 0
                and chunk.size + len(line) > self.config.chunk_limit_size
            ):
                chunk.seal()
                self._queue.append(chunk)
                chunk = None
            if chunk is None:
                chunk = self._new_chunk(metadata)
                self._staged[metadata] = chunk
            chunk.append(line)
        return True

    def _is_ready(self, chunk: Chunk, now: float) -> bool:
        timekey = chunk.metadata.timekey
        if timekey is not None:
            return now >= timekey + self.config.timekey + self.config.timekey_wait
        return now - chunk.created_at >= self.config.flush_interval

    def _take_ready(self, now: float, force: bool) -> list[Chunk]:
        """Move ready staged chunks to the queue and pop the due ones. Lock held."""
        for metadata, chunk in list(self._staged.items()):
            if force or self._is_ready(chunk, now):
                del self._staged[metadata]
                chunk.seal()
                self._queue.append(chunk)

        due, waiting = [], []
        for chunk in self._queue:
            (due if force or chunk.next_retry_at <= now else waiting).append(chunk)
        self._queue = waiting
        return due

    def flush(self, force: bool = False) -> int:
        """Write every ready chunk. Returns the number of chunks accepted."""
        with self._lock:
            chunks = self._take_ready(time.time(), force)

        accepted = 0
        for chunk in chunks:
            try:
                result = self.output.write(chunk)
            except Exception as e:
                logger.exception("Writing chunk %s failed", chunk.chunk_id)
                result = SendResult(SendOutcome.RETRYABLE, None, str(e))
            if self._handle_result(chunk, result):
                accepted += 1
        return accepted

    def _handle_result(self, chunk: Chunk, result: SendResult) -> bool:
        if result.outcome is SendOutcome.SUCCESS:
            chunk.purge()
            with self._lock:
                self._total_flushed += 1
            logger.info("Flushed chunk %s (%d records)", chunk.chunk_id, chunk.record_count)
            return True

        if result.outcome is SendOutcome.LOGGED_DROP:
            chunk.purge()
            with self._lock:
                self._total_dropped += 1
            return False

        if result.outcome is SendOutcome.UNRECOVERABLE:
            logger.error("Chunk %s is unrecoverable, not retrying: %s", chunk.chunk_id, result.message)
            self._evacuate(chunk)
            return False

        chunk.retry_count += 1
        max_times = self.config.retry_max_times
        if max_times is not None and chunk.retry_count > max_times:
            logger.error(
                "Chunk %s failed %d times, giving up: %s",
                chunk.chunk_id, chunk.retry_count, result.message,
            )
            self._evacuate(chunk)
            return False

        wait = min(
            self.config.retry_wait * (2 ** (chunk.retry_count - 1)),
            self.config.retry_max_interval,
        )
        chunk.next_retry_at = time.time() + wait
        chunk.mark_retry()
        with self._lock:
            self._queue.append(chunk)
            self._total_retried += 1
        logger.warning(
            "Chunk %s will be retried in %.1fs (attempt %d): %s",
            chunk.chunk_id, wait, chunk.retry_count, result.message,
        )
        return False

    def _evacuate(self, chunk: Chunk) -> None:
        chunk.evacuate()
        with self._lock:
            self._total_evacuated += 1

    def get_stats(self) -> dict[str, int]:
        """Return buffer statistics."""
        with self._lock:
            chunks = list(self._staged.values()) + self._queue
            return {
                "chunks": len(chunks),
                "buffered_bytes": sum(c.size for c in chunks),
                "total_flushed": self._total_flushed,
                "total_retried": self._total_retried,
                "total_dropped": self._total_dropped,
                "total_evacuated": self._total_evacuated,
            }

    def close(self) -> None:
        """Stop the periodic timer and, if configured, flush everything once."""
        self._closed = True
        if self._flush_timer is not None:
            self._flush_timer.cancel()
            self._flush_timer = None

        if self.config.flush_at_shutdown:
            self.flush(force=True)

        with self._lock:
            remaining = len(self._staged) + len(self._queue)
        if remaining and self.config.type == "memory":
            logger.warning("Closing with %d unsent chunks in memory buffer", remaining)
