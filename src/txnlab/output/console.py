"""Rich Console factory and theme for txnlab output.

Consoles render into a StringIO buffer so formatters keep the
``format_result() -> str`` contract. Without a terminal (tests, pipes)
Rich drops color codes on its own.
"""

from __future__ import annotations

from io import StringIO

from rich.console import Console
from rich.theme import Theme

TXNLAB_THEME = Theme(
    {
        "txn.ok": "bold green",
        "txn.error": "bold red",
        "txn.warning": "bold yellow",
        "txn.op": "bold cyan",
        "txn.key": "dim",
        "txn.account": "bold blue",
        "txn.amount": "magenta",
        "txn.retry": "yellow",
    }
)


def create_console(*, no_color: bool = False, width: int | None = None) -> Console:
    """Create a Console that renders to a StringIO buffer."""
    return Console(
        file=StringIO(),
        theme=TXNLAB_THEME,
        no_color=no_color,
        highlight=False,
        width=width or 120,
    )


def get_output(console: Console) -> str:
    """Extract rendered text from a StringIO-backed Console."""
    assert isinstance(console.file, StringIO)
    return console.file.getvalue()
