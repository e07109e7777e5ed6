"""Small helpers shared by the stores."""

from datetime import date
import re


def slugify(title: str, max_length: int = 50) -> str:
    """Generate a URL-safe ID from a title."""
    # Lowercase, replace spaces with hyphens, remove special chars
    slug = title.lower()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")[:max_length].rstrip("-")


def quarter_label(day: date) -> str:
    """'2026-Q3' for any date in July-September 2026."""
    return f"{day.year}-Q{(day.month - 1) // 3 + 1}"


def quarter_start(day: date) -> date:
    """First day of the quarter containing day."""
    return date(day.year, 3 * ((day.month - 1) // 3) + 1, 1)


def parse_quarter(label: str) -> date:
    """
    Parse '2026-Q3' into the first day of that quarter.

    Raises ValueError for anything else.
    """
    match = re.fullmatch(r"(\d{4})-?[Qq]([1-4])", label.strip())
    if not match:
        raise ValueError(f"Invalid quarter '{label}', expected e.g. 2026-Q3")
    year, quarter = int(match.group(1)), int(match.group(2))
    return date(year, 3 * (quarter - 1) + 1, 1)


ISO_DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}")


def parse_iso_date(value) -> date:
    """
    Parse a strict YYYY-MM-DD date.

    date.fromisoformat alone also takes '20260615' and week dates, which
    would not sort with the rest of a history. Raises ValueError.
    """
    if not isinstance(value, str) or not ISO_DATE_RE.fullmatch(value):
        raise ValueError(f"Invalid date {value!r}, expected YYYY-MM-DD")
    return date.fromisoformat(value)
