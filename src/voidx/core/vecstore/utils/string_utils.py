"""
Utility functions for escaping values and naming Milvus objects.
"""

import re
from typing import Any

from ..core.exceptions import InvalidArgumentError

# Milvus collection and partition names: letters, digits and underscores,
# starting with a letter or underscore
_COLLECTION_NAME_PATTERN: re.Pattern[str] = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_PARTITION_ESCAPE_PATTERN: re.Pattern[str] = re.compile(r"[^A-Za-z0-9]")

MAX_NAME_LENGTH = 255
PARTITION_PREFIX = "partition_"


def escape_milvus_string(input_string: Any) -> str:
    """
    Escapes a value for use inside a double-quoted Milvus expression literal.

    Backslashes are escaped first so the quote escaping is not doubled.

    Args:
        input_string: The value to be escaped.

    Returns:
        The escaped string, without surrounding quotes.
    """
    if not isinstance(input_string, str):
        input_string = str(input_string)
    return input_string.replace("\\", "\\\\").replace('"', '\\"')


def quote_milvus_string(input_string: Any) -> str:
    return f'"{escape_milvus_string(input_string)}"'


def validate_collection_name(name: str) -> str:
    """
    Validate a collection name against Milvus naming rules.

    Args:
        name: Collection name to validate

    Returns:
        The validated collection name

    Raises:
        InvalidArgumentError: If the name is empty, too long or has invalid characters
    """
    if not isinstance(name, str) or not name:
        raise InvalidArgumentError("Collection name cannot be empty")
    if len(name) > MAX_NAME_LENGTH:
        raise InvalidArgumentError(
            f"Collection name exceeds {MAX_NAME_LENGTH} characters",
            details={"collection": name},
        )
    if not _COLLECTION_NAME_PATTERN.match(name):
        raise InvalidArgumentError(
            f"Invalid collection name '{name}'. "
            "Only letters, numbers and underscores are allowed, "
            "and the first character must be a letter or underscore."
        )
    return name


def _escape_partition_char(match: "re.Match[str]") -> str:
    return "".join(f"_x{b:02x}" for b in match.group().encode("utf-8"))


def partition_name(value: Any) -> str:
    """
    Map a partition value to its Milvus partition name.

    The prefix makes values such as creator ids (``"10"``) valid partition
    names. Every character outside ``[A-Za-z0-9]``, the underscore included,
    is written as ``_xHH`` per UTF-8 byte, so distinct values never share a
    partition. The mapping is part of the persisted layout.

    Examples:
        >>> partition_name(10)
        'partition_10'
        >>> partition_name("team-a")
        'partition_team_x2da'
        >>> partition_name("team_a")
        'partition_team_x5fa'
    """
    text = str(value)
    if not text:
        raise InvalidArgumentError("Partition value cannot be empty")
    escaped = _PARTITION_ESCAPE_PATTERN.sub(_escape_partition_char, text)
    name = PARTITION_PREFIX + escaped
    if len(name) > MAX_NAME_LENGTH:
        raise InvalidArgumentError(
            f"Partition name exceeds {MAX_NAME_LENGTH} characters",
            details={"partition": text},
        )
    return name
