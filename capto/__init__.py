"""Capto - capture text anywhere with a trigger, then let an agent act on it."""

__version__ = "0.1.0"
