"""
Forward newline-delimited JSON records from stdin to ClickHouse.

    CLICKHOUSE_HTTP_URI=http://localhost:8123 CLICKHOUSE_TABLE=logs \\
        python -m clickhousejson_output --tag app.access < access.jsonl

Endpoint settings come from CLICKHOUSE_* and buffer settings from
BUFFER_* environment variables.
"""

import argparse
import json
import sys
import time
from typing import Optional, Sequence

from clickhousejson_output.buffer.config import BufferConfig
from clickhousejson_output.buffer.output import BufferedOutput
from clickhousejson_output.clickhouse.config import ClickHouseJSONConfig, ConfigurationError
from clickhousejson_output.clickhouse.output import ClickHouseJSONOutput
from clickhousejson_output.logging.setup import setup_logging


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="clickhousejson_output",
        description="Forward JSON lines from stdin to ClickHouse.",
    )
    parser.add_argument("--tag", default="stdin", help="Tag attached to every record")
    parser.add_argument("--log-dir", default="logs", help="Directory for log files")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ...")
    parser.add_argument(
        "--skip-health-check",
        action="store_true",
        help="Do not run SHOW TABLES against the endpoint at startup",
    )
    return parser.parse_args(argv)


def run(lines, tag: str, host: BufferedOutput, logger) -> int:
    """Submit every JSON object line. Returns the number of records buffered."""
    submitted = 0
    for lineno, line in enumerate(lines, 1):
        line = line.strip()
        if not line:
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning("Skipping line %d: invalid JSON (%s)", lineno, e)
            continue
        if not isinstance(record, dict):
            logger.warning("Skipping line %d: not a JSON object", lineno)
            continue
        if host.submit(tag, time.time(), record):
            submitted += 1
    return submitted


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    logger = setup_logging(
        "clickhousejson_output",
        log_dir=args.log_dir,
        level=args.log_level,
        enable_dropped_chunk_log=True,
    )

    output = ClickHouseJSONOutput(ClickHouseJSONConfig.from_env(), BufferConfig.from_env())
    try:
        output.configure(health_check=not args.skip_health_check)
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        return 2

    host = BufferedOutput(output)
    try:
        submitted = run(sys.stdin, args.tag, host, logger)
    finally:
        host.close()

    logger.info("Forwarded %d records, stats: %s", submitted, host.get_stats())
    return 0


if __name__ == "__main__":
    sys.exit(main())
