"""
Placeholder resolution for per-chunk table names.

A table such as "logs_%Y%m%d" or "${tag}_events" is resolved against
the metadata of the chunk being written:

    %Y, %m, ...   strftime on the chunk's timekey   (needs "time" chunk key)
    ${tag}        the chunk's tag                   (needs "tag" chunk key)
    ${tag[N]}     Nth dot-separated part of the tag (needs "tag" chunk key)
    ${name}       value of chunk key "name"
"""

import re
import time
from typing import TYPE_CHECKING, Iterable

from clickhousejson_output.clickhouse.config import ConfigurationError

if TYPE_CHECKING:
    from clickhousejson_output.buffer.chunk import ChunkMetadata

_STRFTIME_RE = re.compile(r"%[a-zA-Z]")
_VARIABLE_RE = re.compile(r"\$\{([^}\[\]]+)(?:\[(-?\d+)\])?\}")


def has_time_placeholders(template: str) -> bool:
    return bool(_STRFTIME_RE.search(template))


def validate_placeholders(template: str, chunk_keys: Iterable[str]) -> None:
    """Raise ConfigurationError if template uses a placeholder no chunk key provides."""
    keys = set(chunk_keys)

    if has_time_placeholders(template) and "time" not in keys:
        raise ConfigurationError(
            f"Parameter {template!r} has timestamp placeholders, but chunk key 'time' is not configured"
        )

    for match in _VARIABLE_RE.finditer(template):
        name = match.group(1)
        if name not in keys:
            raise ConfigurationError(
                f"Parameter {template!r} has placeholder ${{{name}}}, "
                f"but chunk key {name!r} is not configured"
            )


def extract_placeholders(template: str, metadata: "ChunkMetadata", use_utc: bool = False) -> str:
    """Resolve template against one chunk's metadata."""
    result = template

    if metadata.timekey is not None and has_time_placeholders(result):
        t = time.gmtime(metadata.timekey) if use_utc else time.localtime(metadata.timekey)
        result = time.strftime(result, t)

    variables = dict(metadata.variables)

    def _replace(match: re.Match) -> str:
        name, index = match.group(1), match.group(2)
        if name == "tag" and metadata.tag is not None:
            if index is None:
                return metadata.tag
            parts = metadata.tag.split(".")
            try:
                return parts[int(index)]
            except IndexError:
                return match.group(0)
        if name in variables:
            return str(variables[name])
        return match.group(0)

    return _VARIABLE_RE.sub(_replace, result)
