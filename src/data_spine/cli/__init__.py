"""
CLI layer for data-spine.

Provides a Typer application whose commands delegate to
:class:`~data_spine.session.Session`.  This package handles only terminal
transport: argument parsing, coloured output, and table formatting.

Entry point::

    data-spine --help
"""

from data_spine.cli.app import app

__all__ = ["app"]
