import json


def to_uppercase(value: str | None) -> str | None:
    """
    Converts a string to uppercase if it's not None.
    """
    if value is None:
        return None
    return value.upper()

def to_lowercase(value: str | None) -> str | None:
    if value is None:
        return None
    return value.lower()

def to_interval_list(value):
    """
    Turn `"600, 1800"` or `"[600, 1800]"` into `[600.0, 1800.0]`.

    Non-string values (lists passed to the constructor) pass through untouched;
    an empty string means "no warm-up intervals".
    """
    if not isinstance(value, str):
        return value
    value = value.strip()
    if not value:
        return []
    if value.startswith("["):
        return json.loads(value)
    return [float(part) for part in value.split(",") if part.strip()]
