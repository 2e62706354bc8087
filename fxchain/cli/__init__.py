"""
fxchain.cli
-----------

Typer application behind the `fxchain` console script.
"""

from .main import app, main, run

__all__ = ["app", "main", "run"]
