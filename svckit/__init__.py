"""Service building blocks: a hash set, an auto-refreshing cache and circuit breakers."""

__version__ = "0.1.0"