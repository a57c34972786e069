"""Value conversion shared by settings and declared records."""
from typing import Any

BOOL_TRUE = ("1", "true", "yes", "on")
BOOL_FALSE = ("0", "false", "no", "off")


def parse_bool(value: Any) -> bool:
    """
    Interpret a YAML or environment value as a boolean.

    Raises:
        ValueError: the value is not a recognized yes/no word
    """
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in BOOL_TRUE:
        return True
    if lowered in BOOL_FALSE:
        return False
    raise ValueError(f"Expected a boolean, got {value!r}")
