"""Field-name translation between the record convention (camelCase) and storage (snake_case)"""
import re
from typing import Any, Iterable, Optional

_UPPER = re.compile(r"[A-Z]")
_UNDERSCORE_LOWER = re.compile(r"_([a-z0-9])")


def to_snake_case(name: str) -> str:
    """firstName -> first_name"""
    return _UPPER.sub(lambda m: f"_{m.group(0).lower()}", name)


def to_camel_case(name: str) -> str:
    """first_name -> firstName"""
    return _UNDERSCORE_LOWER.sub(lambda m: m.group(1).upper(), name)


def keys_to_snake(data: Optional[dict[str, Any]]) -> dict[str, Any]:
    if not data:
        return {}
    return {to_snake_case(key): value for key, value in data.items()}


def keys_to_camel(data: Optional[dict[str, Any]]) -> dict[str, Any]:
    if not data:
        return {}
    return {to_camel_case(key): value for key, value in data.items()}


def names_to_snake(names: Optional[Iterable[str]]) -> Optional[list[str]]:
    if names is None:
        return None
    return [to_snake_case(name) for name in names]
