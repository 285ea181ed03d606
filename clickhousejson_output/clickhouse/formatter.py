"""
Record formatter for ClickHouse's JSONEachRow input format.

Turns one record into one JSON line, optionally injecting the event time
and tag and dropping null-valued fields.
"""

import json
import math
from typing import Any, Mapping, Optional, Union

Timestamp = Union[int, float]


class RecordFormatter:
    """
    Formats records as newline-terminated UTF-8 JSON lines.

    Stateless after construction, so one instance is safe to share
    between threads.
    """

    def __init__(
        self,
        datetime_name: Optional[str] = None,
        tag_name: Optional[str] = None,
        datetime_precision: int = 0,
        tz_offset: int = 0,
        drop_null_fields: bool = True,
    ):
        """
        Args:
            datetime_name: Field to store the event time in, if any.
            tag_name: Field to store the tag in, if any.
            datetime_precision: Sub-second digits for DateTime64 columns.
                0 stores whole seconds.
            tz_offset: Offset in minutes added to the stored time.
            drop_null_fields: Omit fields whose value is None.
        """
        self.datetime_name = datetime_name
        self.tag_name = tag_name
        self.datetime_precision = datetime_precision
        self.tz_offset = tz_offset
        self.drop_null_fields = drop_null_fields

    def event_time(self, timestamp: Timestamp) -> int:
        """Value stored in the datetime field for this timestamp.

        With a precision the timestamp is scaled first and the offset is
        added afterwards in seconds, unscaled.
        """
        offset = self.tz_offset * 60
        if self.datetime_precision > 0:
            return math.floor(float(timestamp) * (10 ** self.datetime_precision)) + offset
        return int(timestamp) + offset

    def format(self, tag: str, timestamp: Timestamp, record: Mapping[str, Any]) -> bytes:
        """Return one JSON line for the record. The record is never modified."""
        row = dict(record)

        if self.datetime_name:
            row[self.datetime_name] = self.event_time(timestamp)

        if self.tag_name:
            row[self.tag_name] = tag

        if self.drop_null_fields:
            row = {k: v for k, v in row.items() if v is not None}

        # control characters are escaped, so the line holds no raw newline;
        # NaN and Infinity are not JSON and raise ValueError
        line = json.dumps(row, ensure_ascii=False, separators=(",", ":"), allow_nan=False)
        return (line + "\n").encode("utf-8")
