"""
Name list helpers shared by entity and tag resolution.
"""


def unique_names(values: list[str], exclude: str | None = None) -> list[str]:
    """
    Order-preserving dedupe of surface names.

    Values are stripped; blanks and `exclude` are dropped. Comparison is
    exact, so "OpenAI" and "openai" are both kept.
    """
    seen: dict[str, None] = {}
    for value in values:
        value = value.strip() if value else ""
        if value and value != exclude:
            seen.setdefault(value, None)
    return list(seen)
