"""Helpers for building portable SQL filters."""


def like_pattern(text: str) -> str:
    """Substring LIKE pattern, escaping wildcards with a backslash."""
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"
