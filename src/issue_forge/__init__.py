"""Issue draft generation driven by an external agent CLI."""

__version__ = "0.1.0"
