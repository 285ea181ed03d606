"""
HTTP sender for ClickHouse.

Posts buffered chunks to ClickHouse's HTTP interface as
INSERT ... FORMAT JSONEachRow and classifies the response.
Uses only stdlib urllib, no requests dependency.
"""

import enum
import logging
import ssl
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode, urlsplit

from clickhousejson_output.clickhouse.config import ClickHouseJSONConfig, ConfigurationError
from clickhousejson_output.logging.setup import DROPPED_LOGGER_NAME

logger = logging.getLogger(__name__)
dropped_logger = logging.getLogger(DROPPED_LOGGER_NAME)

HEALTH_CHECK_QUERY = "SHOW TABLES"


class SendOutcome(enum.Enum):
    """Terminal state of one send attempt."""

    SUCCESS = "success"
    RETRYABLE = "retryable"
    UNRECOVERABLE = "unrecoverable"
    LOGGED_DROP = "logged_drop"


@dataclass(frozen=True)
class SendResult:
    outcome: SendOutcome
    status: Optional[int] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome is SendOutcome.SUCCESS


def insert_query(table: str) -> str:
    return f"INSERT INTO {table} FORMAT JSONEachRow"


class ChunkSender:
    """
    Sends chunks to one ClickHouse endpoint.

    Holds only the validated config, so a single instance can be used
    from several worker threads at once. Every request opens a new
    connection.
    """

    def __init__(self, config: ClickHouseJSONConfig):
        self.config = config
        self._base_uri = f"{config.http_uri}/"
        self._retryable = frozenset(config.retryable_response_codes)
        self._ssl_context = self._make_ssl_context()

    def _make_ssl_context(self) -> Optional[ssl.SSLContext]:
        if urlsplit(self._base_uri).scheme != "https":
            return None
        context = ssl.create_default_context()
        if self.config.insecure_skip_verify:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    def build_uri(self, query: str) -> str:
        """Base URI with the fixed parameters plus the given query."""
        params = dict(self.config.query_params)
        params["query"] = query
        return f"{self._base_uri}?{urlencode(params)}"

    def _open(self, req: urllib.request.Request):
        return urllib.request.urlopen(
            req,
            timeout=self.config.request_timeout,
            context=self._ssl_context,
        )

    def health_check(self) -> None:
        """Run SHOW TABLES once. Raises ConfigurationError unless it answers 200."""
        req = urllib.request.Request(self.build_uri(HEALTH_CHECK_QUERY), method="GET")
        try:
            with self._open(req) as resp:
                status = resp.status
                body = resp.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace")
            raise ConfigurationError(
                f"ClickHouse server responded non-200 code: {body}"
            ) from e
        except (urllib.error.URLError, OSError) as e:
            reason = getattr(e, "reason", e)
            if isinstance(reason, ConnectionRefusedError):
                raise ConfigurationError(
                    f"Couldn't connect to ClickHouse at {self._base_uri} - connection refused"
                ) from e
            raise ConfigurationError(
                f"Couldn't connect to ClickHouse at {self._base_uri}: {reason}"
            ) from e

        if status != 200:
            raise ConfigurationError(f"ClickHouse server responded non-200 code: {body}")
        logger.info("ClickHouse at %s is reachable", self._base_uri)

    def send(self, chunk: bytes, table: str) -> SendResult:
        """POST one chunk into table and classify the response."""
        req = urllib.request.Request(
            self.build_uri(insert_query(table)),
            data=chunk,
            method="POST",
        )
        try:
            with self._open(req) as resp:
                status = resp.status
                body = resp.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as e:
            status = e.code
            body = e.read().decode("utf-8", errors="replace")
        except (urllib.error.URLError, OSError) as e:
            reason = getattr(e, "reason", e)
            logger.warning("ClickHouse unreachable (will retry): %s", reason)
            return SendResult(SendOutcome.RETRYABLE, None, f"ClickHouse unreachable: {reason}")

        return self.classify(status, body)

    def classify(self, status: int, body: str) -> SendResult:
        """Map an HTTP status to a send outcome."""
        if 200 <= status < 300:
            return SendResult(SendOutcome.SUCCESS, status)

        msg = f"Clickhouse responded: {body}"

        if status in self._retryable:
            logger.warning("ClickHouse responded %d (will retry): %s", status, body)
            return SendResult(SendOutcome.RETRYABLE, status, msg)

        if self.config.error_response_as_unrecoverable:
            logger.error("ClickHouse responded %d (unrecoverable): %s", status, body)
            return SendResult(SendOutcome.UNRECOVERABLE, status, msg)

        dropped_logger.error("ClickHouse responded %d, chunk dropped: %s", status, body)
        return SendResult(SendOutcome.LOGGED_DROP, status, msg)
