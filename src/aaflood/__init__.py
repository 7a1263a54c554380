"""aaflood: anticipatory-action flood trigger engine."""

__version__ = "0.1.0"
