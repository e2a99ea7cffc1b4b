"""GhostNote billing service — subscription lifecycle backend."""

__version__ = "1.4.0"
