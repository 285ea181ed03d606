"""
ClickHouse JSONEachRow output.

The plugin surface a host drives: configure() once at startup, format()
for every record, write() for every flushed chunk.
"""

import copy
import logging
from typing import TYPE_CHECKING, Any, Mapping, Optional

from clickhousejson_output.buffer.config import BufferConfig
from clickhousejson_output.buffer.placeholders import extract_placeholders, validate_placeholders
from clickhousejson_output.clickhouse.config import ClickHouseJSONConfig, ConfigurationError
from clickhousejson_output.clickhouse.formatter import RecordFormatter, Timestamp
from clickhousejson_output.clickhouse.sender import ChunkSender, SendResult

if TYPE_CHECKING:
    from clickhousejson_output.buffer.chunk import ChunkMetadata

logger = logging.getLogger(__name__)


class ClickHouseJSONOutput:
    """
    Output plugin writing chunks of JSON lines into a ClickHouse table.

    Safe to call from several host workers once configured: all state
    set by configure() is read-only afterwards.
    """

    def __init__(
        self,
        config: Optional[ClickHouseJSONConfig] = None,
        buffer_config: Optional[BufferConfig] = None,
    ):
        """
        Args:
            config: Endpoint settings. Defaults to ClickHouseJSONConfig.from_env().
            buffer_config: Buffer settings the table template is checked
                against. Defaults to BufferConfig().
        """
        self.config = config or ClickHouseJSONConfig.from_env()
        self.buffer_config = buffer_config or BufferConfig()
        self.formatter: Optional[RecordFormatter] = None
        self.sender: Optional[ChunkSender] = None

    def configure(self, health_check: bool = True) -> None:
        """Validate settings and check the endpoint. Raises ConfigurationError.

        The output keeps private copies of both configs, so changes made
        to the caller's objects afterwards do not reach it.
        """
        config = copy.deepcopy(self.config)
        buffer_config = copy.deepcopy(self.buffer_config)
        config.validate()
        buffer_config.validate()
        validate_placeholders(config.table, buffer_config.chunk_keys)
        self.config = config
        self.buffer_config = buffer_config

        self.formatter = RecordFormatter(
            datetime_name=self.config.datetime_name,
            tag_name=self.config.tag_name,
            datetime_precision=self.config.datetime_precision,
            tz_offset=self.config.tz_offset,
            drop_null_fields=self.config.drop_null_fields,
        )
        self.sender = ChunkSender(self.config)

        if self.config.http_uri.startswith("https") and self.config.insecure_skip_verify:
            logger.warning(
                "TLS certificate verification is disabled for %s "
                "(set insecure_skip_verify=false to enable it)",
                self.config.http_uri,
            )

        if health_check:
            self.sender.health_check()

        logger.info(
            "Configured ClickHouse output %s database=%s table=%s",
            self.config.http_uri, self.config.database, self.config.table,
        )

    def _require_configured(self) -> None:
        if self.formatter is None or self.sender is None:
            raise ConfigurationError("output is not configured")

    def format(self, tag: str, timestamp: Timestamp, record: Mapping[str, Any]) -> bytes:
        self._require_configured()
        return self.formatter.format(tag, timestamp, record)

    def resolve_table(self, metadata: "ChunkMetadata") -> str:
        return extract_placeholders(
            self.config.table, metadata, use_utc=self.buffer_config.timekey_use_utc
        )

    def write(self, chunk) -> SendResult:
        """Insert one chunk. The chunk is read, never modified."""
        self._require_configured()
        table = self.resolve_table(chunk.metadata)
        return self.sender.send(chunk.read(), table)
