"""Derived rates, always computed on read from raw counters."""


def percentage(part: float, whole: float) -> float:
    """Return ``part / whole * 100`` rounded to one decimal, 0.0 when ``whole`` is 0."""
    if not whole:
        return 0.0
    return round(part / whole * 100, 1)


def completion_rate(triggers: int, completions: int) -> float:
    """Completion rate clamped to [0, 100]."""
    return min(100.0, max(0.0, percentage(completions, triggers)))


def format_percent(value: float) -> str:
    return f"{value:.1f}%"
