import re
from typing import Any

# Everything in C0 except tab, newline and carriage return, plus DEL.
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")


def strip_control_chars(text: str) -> str:
    """Remove non-printable control characters, keeping tab/newline/CR."""
    return _CONTROL_CHARS_RE.sub("", text)


def sanitize_control_chars(data: Any) -> Any:
    """
    Recursively strip control characters from strings, lists, and dictionaries.
    Used for anything captured from a sandbox run before it reaches a prompt
    or a JSON response.
    """
    if isinstance(data, str):
        return strip_control_chars(data)
    elif isinstance(data, list):
        return [sanitize_control_chars(item) for item in data]
    elif isinstance(data, dict):
        return {key: sanitize_control_chars(value) for key, value in data.items()}
    else:
        return data
