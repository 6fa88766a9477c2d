"""Application bootstrap and CLI entrypoints."""

from .launcher import main, parse_arguments, setup_logging

__all__ = ["main", "parse_arguments", "setup_logging"]
