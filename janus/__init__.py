"""janus: a two-way dotfile manager."""

__version__ = "0.3.0"
