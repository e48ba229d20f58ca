"""Click command class with an ``--examples`` flag.

Examples are ``(command line, what it shows)`` pairs. ``--examples``
prints them as an aligned list and exits, which keeps ``--help`` short.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import click

type Example = tuple[str, str]


def format_examples(examples: Sequence[Example]) -> str:
    """Render example pairs as ``  <command>  # <description>`` lines."""
    width = max(len(command) for command, _ in examples)
    lines = []
    for command, description in examples:
        if description:
            lines.append(f"  {command.ljust(width)}  # {description}")
        else:
            lines.append(f"  {command}")
    return "\n".join(lines)


class TxnCommand(click.Command):
    """Click Command that supports an eager ``--examples`` flag."""

    def __init__(
        self, *args: Any, examples: Sequence[Example] = (), **kwargs: Any
    ) -> None:
        super().__init__(*args, **kwargs)
        self.examples = tuple(examples)
        if self.examples:
            self.params.append(
                click.Option(
                    ["--examples"],
                    is_flag=True,
                    expose_value=False,
                    is_eager=True,
                    callback=self._show_examples,
                    help="Show usage examples and exit.",
                )
            )

    def _show_examples(self, ctx: click.Context, _param: click.Parameter, value: bool) -> None:
        if not value or ctx.resilient_parsing:
            return
        click.echo(f"Examples for '{ctx.command_path}':\n")
        click.echo(format_examples(self.examples))
        ctx.exit(0)
