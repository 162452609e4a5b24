# wareneingang/utils/formatting.py
from datetime import date


def format_date_de(d: date) -> str:
    """
    Format a date the German way.
    Example: date(2024, 6, 7) -> "07.06.2024"
    """
    return d.strftime("%d.%m.%Y")


def batch_prefix(d: date) -> str:
    """
    Month/day prefix used for batch numbers.
    Example: date(2024, 6, 7) -> "0607"
    """
    return f"{d.month:02d}{d.day:02d}"
