"""Command-line interface for filemutex."""

from filemutex.cli.main import main
from filemutex.cli.parser import parse_arguments

__all__ = ["main", "parse_arguments"]
