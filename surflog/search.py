from collections.abc import Iterable

from .schemas import Entry


def sort_entries(entries: Iterable[Entry]) -> list[Entry]:
    """Newest first by creation stamp."""
    return sorted(entries, key=lambda entry: entry.created_at, reverse=True)


def _matches(entry: Entry, needle: str) -> bool:
    return (
        needle in entry.location.lower()
        or needle in entry.conditions_text.lower()
        or needle in entry.notes_text.lower()
    )


def filter_entries(entries: Iterable[Entry], query: str) -> list[Entry]:
    """Case-insensitive substring search over location, conditions and notes.

    A blank query returns every entry. Results are always newest first.
    """
    ordered = sort_entries(entries)
    needle = query.strip().lower()
    if not needle:
        return ordered
    return [entry for entry in ordered if _matches(entry, needle)]
