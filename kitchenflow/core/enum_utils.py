"""
Enum Utilities for VARCHAR-based Status Fields

Status columns are stored as String(20) holding the lowercase enum value
("pending", "ready", "served"). Pydantic schemas validate input against the
Python Enum; values read back from the database are plain strings.
"""

from enum import Enum
from typing import Any, Optional, TypeVar, Type


T = TypeVar('T', bound=Enum)


def get_enum_value(value: Any) -> Optional[str]:
    """
    Safely get string value from an enum or string.

    Examples:
        >>> get_enum_value(ItemStatus.READY)
        'ready'
        >>> get_enum_value("ready")
        'ready'
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    return str(value)


def to_enum(value: Any, enum_class: Type[T]) -> Optional[T]:
    """
    Convert a string value to an enum instance, or None if it is not a member.

    Examples:
        >>> to_enum("ready", ItemStatus)
        ItemStatus.READY
        >>> to_enum("cooking", ItemStatus)
        None
    """
    if value is None:
        return None
    if isinstance(value, enum_class):
        return value
    try:
        return enum_class(str(value).lower())
    except (ValueError, KeyError):
        return None


def enum_values(enum_class: Type[Enum]) -> list:
    """All values of an enum class, e.g. for column comments."""
    return [e.value for e in enum_class]
