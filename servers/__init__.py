"""Server tools package - context store tools."""

from .context_tools import context_server

__all__ = ["context_server"]
