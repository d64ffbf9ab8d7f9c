"""Reading and validating runtime-security rules files, with rulesets, match statistics and signal handling."""

__version__ = "0.1.0"

__all__ = [
    "decoding",
    "loader_types",
    "reader",
    "rules",
    "signals",
    "sources",
    "stats",
    "version",
]