"""Storage tiers for protected datasets.

This package holds the primary store and its deletion guard, the local
version index, the SQLite secondary store, and archive IO.
"""
