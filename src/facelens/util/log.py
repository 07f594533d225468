from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(verbose: bool = False, console: Console | None = None) -> None:
    """Route facelens loggers through rich. Safe to call more than once."""
    level = logging.DEBUG if verbose else logging.INFO
    root = logging.getLogger("facelens")
    root.setLevel(level)
    for h in list(root.handlers):
        if isinstance(h, RichHandler):
            root.removeHandler(h)
    handler = RichHandler(console=console, show_path=verbose, rich_tracebacks=True, markup=False)
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    root.addHandler(handler)
    root.propagate = False
