"""Rich/JSON output for ServiceResult.

Three modes: ``--json`` dumps the result model, ``--quiet`` prints one
status line, and the default renders op-specific Rich tables. Renderers
are dispatched by ``result.op``; unknown ops get key-value pairs.
"""

from __future__ import annotations

import json as _json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from rich.table import Table
from rich.text import Text

from txnlab.output.console import create_console, get_output

if TYPE_CHECKING:
    from collections.abc import Callable

    from rich.console import Console

    from txnlab.services.result import ServiceResult


@dataclass(frozen=True)
class OutputSettings:
    json_output: bool = False
    quiet: bool = False
    verbose: bool = False


def format_result(result: ServiceResult, *, settings: OutputSettings | None = None) -> str:
    """Format a ServiceResult for display according to *settings*."""
    settings = settings or OutputSettings()
    if settings.json_output:
        return result.model_dump_json(indent=2)
    if settings.quiet:
        return _status_text(result)

    console = create_console()
    if result.ok:
        console.print(Text("OK", style="txn.ok"), Text(result.op, style="txn.op"))
        renderer = _OP_RENDERERS.get(result.op, _render_generic)
        renderer(result.data, console)
    else:
        message = result.error.message if result.error else "Unknown error"
        code = result.error.code if result.error else "error"
        console.print(
            Text("ERROR", style="txn.error"),
            Text(result.op, style="txn.op"),
            Text(f"[{code}] {message}"),
        )
        if result.error and result.error.detail:
            _render_generic(result.error.detail, console)
    if settings.verbose and result.meta:
        console.print(Text("meta", style="txn.key"), Text(_json.dumps(result.meta, default=str)))
    return get_output(console).rstrip("\n")


def _status_text(result: ServiceResult) -> str:
    if result.ok:
        return f"OK: {result.op}"
    message = result.error.message if result.error else "Unknown error"
    return f"ERROR: {result.op} - {message}"


# ── Renderers ─────────────────────────────────────────────────────────


def _render_generic(data: dict[str, Any], console: Console) -> None:
    for key, value in data.items():
        if isinstance(value, (dict, list)):
            value = _json.dumps(value, separators=(",", ":"), default=str)
        console.print(Text(f"  {key}:", style="txn.key"), Text(str(value)))


def _render_balances(data: dict[str, Any], console: Console) -> None:
    table = Table(show_edge=False, pad_edge=False)
    table.add_column("account", style="txn.account")
    table.add_column("balance", justify="right", style="txn.amount")
    for account_id, balance in data.get("balances", {}).items():
        table.add_row(account_id, str(balance))
    console.print(table)
    if "total" in data:
        console.print(Text("  total:", style="txn.key"), Text(str(data["total"])))


def _render_experiment(data: dict[str, Any], console: Console) -> None:
    _render_balances(data, console)
    for key in ("lock_order", "isolation", "conserved", "attempts", "committed"):
        if key in data:
            console.print(Text(f"  {key}:", style="txn.key"), Text(str(data[key])))
    table = Table(title="actors", show_edge=False, pad_edge=False)
    for column in ("actor", "operations", "attempts", "committed", "retries", "fatal"):
        table.add_column(column)
    for actor in data.get("actors", []):
        table.add_row(
            str(actor["actor"]),
            str(actor["operations"]),
            str(actor["attempts"]),
            str(actor["committed"]),
            Text(_counts(actor["retries"]), style="txn.retry"),
            _counts(actor["fatal"]),
        )
    console.print(table)


def _render_isolation(data: dict[str, Any], console: Console) -> None:
    table = Table(show_edge=False, pad_edge=False)
    for column in ("isolation", "first read", "second read", "attempts", "final", "outcome"):
        table.add_column(column)
    for row in data.get("levels", []):
        table.add_row(
            row["isolation"],
            str(row.get("first_read") or "-"),
            str(row.get("second_read") or "-"),
            str(row["attempts"]),
            str(row["final_balance"]),
            row["outcome"],
        )
    console.print(table)


def _counts(counts: dict[str, int]) -> str:
    return ", ".join(f"{k}={v}" for k, v in sorted(counts.items())) or "-"


_OP_RENDERERS: dict[str, Callable[[dict[str, Any], Console], None]] = {
    "balances": _render_balances,
    "reset": _render_balances,
    "transfer": _render_balances,
    "atomicity_demo": _render_balances,
    "run_experiment": _render_experiment,
    "isolation_demo": _render_isolation,
}
