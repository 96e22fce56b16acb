"""Question answering over large cached documents."""

__version__ = "0.1.0"
