from .entries import EntryRepository

__all__ = ["EntryRepository"]
