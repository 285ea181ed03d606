"""
ClickHouse JSON output configuration.

Pure Python, no network access. Follows the @dataclass + from_env()
pattern; from_dict() accepts the flat option mapping of a config file,
where every value may still be a string.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional
from urllib.parse import urlsplit

MAX_DATETIME_PRECISION = 9  # DateTime64(9)


class ConfigurationError(Exception):
    """Raised when the output cannot be configured or the endpoint is unusable."""


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes", "on")


def parse_int_list(value: Any) -> list[int]:
    """Parse "503,504", "[503, 504]" or an iterable of ints."""
    if isinstance(value, str):
        items = value.strip().strip("[]").split(",")
        return [int(item) for item in (i.strip() for i in items) if item]
    return [int(item) for item in value]


def _optional(value: Optional[str]) -> Optional[str]:
    return value if value else None


@dataclass
class ClickHouseJSONConfig:
    """Endpoint, formatting and response-handling settings."""

    http_uri: str = ""
    table: str = ""
    database: str = "default"
    user: str = "default"
    password: str = ""
    tz_offset: int = 0  # minutes
    datetime_name: Optional[str] = None
    tag_name: Optional[str] = None
    datetime_precision: int = 0
    drop_null_fields: bool = True
    error_response_as_unrecoverable: bool = False
    retryable_response_codes: list[int] = field(default_factory=lambda: [503])
    insecure_skip_verify: bool = True
    request_timeout: Optional[float] = None

    @classmethod
    def from_env(cls) -> "ClickHouseJSONConfig":
        """Create config from CLICKHOUSE_* environment variables."""
        timeout = os.getenv("CLICKHOUSE_REQUEST_TIMEOUT")
        return cls(
            http_uri=os.getenv("CLICKHOUSE_HTTP_URI", ""),
            table=os.getenv("CLICKHOUSE_TABLE", ""),
            database=os.getenv("CLICKHOUSE_DATABASE", "default"),
            user=os.getenv("CLICKHOUSE_USER", "default"),
            password=os.getenv("CLICKHOUSE_PASSWORD", ""),
            tz_offset=int(os.getenv("CLICKHOUSE_TZ_OFFSET", "0")),
            datetime_name=_optional(os.getenv("CLICKHOUSE_DATETIME_NAME")),
            tag_name=_optional(os.getenv("CLICKHOUSE_TAG_NAME")),
            datetime_precision=int(os.getenv("CLICKHOUSE_DATETIME_PRECISION", "0")),
            drop_null_fields=parse_bool(os.getenv("CLICKHOUSE_DROP_NULL_FIELDS", "true")),
            error_response_as_unrecoverable=parse_bool(
                os.getenv("CLICKHOUSE_ERROR_RESPONSE_AS_UNRECOVERABLE", "false")
            ),
            retryable_response_codes=parse_int_list(
                os.getenv("CLICKHOUSE_RETRYABLE_RESPONSE_CODES", "503")
            ),
            insecure_skip_verify=parse_bool(os.getenv("CLICKHOUSE_INSECURE_SKIP_VERIFY", "true")),
            request_timeout=float(timeout) if timeout else None,
        )

    @classmethod
    def from_dict(cls, conf: Mapping[str, Any]) -> "ClickHouseJSONConfig":
        """Create config from a flat option mapping, ignoring unknown keys."""
        config = cls(
            http_uri=str(conf.get("http_uri", "")),
            table=str(conf.get("table", "")),
        )
        if conf.get("database") is not None:
            config.database = str(conf["database"])
        if conf.get("user") is not None:
            config.user = str(conf["user"])
        if conf.get("password") is not None:
            config.password = str(conf["password"])
        if "tz_offset" in conf:
            config.tz_offset = int(conf["tz_offset"])
        config.datetime_name = _optional(conf.get("datetime_name"))
        config.tag_name = _optional(conf.get("tag_name"))
        if "datetime_precision" in conf:
            config.datetime_precision = int(conf["datetime_precision"])
        if "drop_null_fields" in conf:
            config.drop_null_fields = parse_bool(conf["drop_null_fields"])
        if "error_response_as_unrecoverable" in conf:
            config.error_response_as_unrecoverable = parse_bool(
                conf["error_response_as_unrecoverable"]
            )
        if "retryable_response_codes" in conf:
            config.retryable_response_codes = parse_int_list(conf["retryable_response_codes"])
        if "insecure_skip_verify" in conf:
            config.insecure_skip_verify = parse_bool(conf["insecure_skip_verify"])
        if conf.get("request_timeout") is not None:
            config.request_timeout = float(conf["request_timeout"])
        return config

    def validate(self) -> None:
        """Raise ConfigurationError if the settings cannot be used."""
        if not self.http_uri:
            raise ConfigurationError("'http_uri' parameter is required")
        if not self.table:
            raise ConfigurationError("'table' parameter is required")

        scheme = urlsplit(self.http_uri).scheme
        if scheme not in ("http", "https"):
            raise ConfigurationError(
                f"'http_uri' must be an http or https URI, got {self.http_uri!r}"
            )

        if not 0 <= self.datetime_precision <= MAX_DATETIME_PRECISION:
            raise ConfigurationError(
                f"'datetime_precision' must be between 0 and {MAX_DATETIME_PRECISION}, "
                f"got {self.datetime_precision}"
            )

        for code in self.retryable_response_codes:
            if not 100 <= code <= 599:
                raise ConfigurationError(f"invalid retryable response code: {code}")

    @property
    def query_params(self) -> dict[str, Any]:
        """Fixed query parameters sent with every request."""
        return {
            "database": self.database or "default",
            "user": self.user or "default",
            "password": self.password or "",
            "input_format_skip_unknown_fields": 1,
        }
