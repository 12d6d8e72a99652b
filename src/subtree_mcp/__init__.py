"""Embed a subordinate project's history under a prefix of a host git repository."""

__version__ = "0.1.0"
