"""
clickhousejson-output: forwards buffered log records to ClickHouse over HTTP.

Convenience re-exports for the most commonly used classes and functions.
"""

from clickhousejson_output.buffer.config import BufferConfig
from clickhousejson_output.buffer.output import BufferedOutput
from clickhousejson_output.clickhouse.config import ClickHouseJSONConfig, ConfigurationError
from clickhousejson_output.clickhouse.formatter import RecordFormatter
from clickhousejson_output.clickhouse.output import ClickHouseJSONOutput
from clickhousejson_output.clickhouse.sender import ChunkSender, SendOutcome, SendResult
from clickhousejson_output.logging.setup import setup_logging

__all__ = [
    "BufferConfig",
    "BufferedOutput",
    "ChunkSender",
    "ClickHouseJSONConfig",
    "ClickHouseJSONOutput",
    "ConfigurationError",
    "RecordFormatter",
    "SendOutcome",
    "SendResult",
    "setup_logging",
]
