"""
CLI utility helpers: output formatting, registry loading and session setup.
"""

from __future__ import annotations

import importlib
import json
from dataclasses import asdict
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from data_spine.errors import DataSpineError, InvalidRequestError
from data_spine.registry import EntityRegistry
from data_spine.result import OperationResult, PagedResult
from data_spine.session import SessionFactory
from data_spine.settings import get_settings
from data_spine.store import SqlStore

console = Console()
err_console = Console(stderr=True)

DEFAULT_REGISTRY = "data_spine.domain:build_registry"


# ── Registry / factory helpers ───────────────────────────────────────────


def load_registry(spec: str | None = None) -> EntityRegistry:
    """Load a registry from ``module:attr`` (a registry, or a callable returning one)."""
    spec = spec or DEFAULT_REGISTRY
    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise InvalidRequestError(f"Registry must be given as module:attr, got {spec!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise InvalidRequestError(f"Cannot import registry module {module_name!r}: {e}") from e
    try:
        target = getattr(module, attr)
    except AttributeError:
        raise InvalidRequestError(f"Module {module_name!r} has no attribute {attr!r}") from None

    registry = target if isinstance(target, EntityRegistry) else target() if callable(target) else target
    if not isinstance(registry, EntityRegistry):
        raise InvalidRequestError(f"{spec!r} did not produce an EntityRegistry")
    return registry.freeze()


def open_factory(database: str | None = None, registry: str | None = None) -> SessionFactory:
    """Session factory over the SQLite database used by the CLI.

    Defaults to ``DATA_SPINE_DATABASE`` (``~/.data_spine/data_spine.db``).
    """
    settings = get_settings()
    db_path = Path(database) if database else settings.database
    store = SqlStore.sqlite(db_path)
    return SessionFactory(store, load_registry(registry), settings)


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert dataclass / pydantic model / dict to plain dict."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": obj}


def fail(error: DataSpineError, *, request: str | None = None, as_json: bool = False) -> None:
    """Report a failed command (error kind + failing request) and exit 1."""
    output_result(OperationResult.from_error(error, request=request), as_json=as_json)


def output_result(
    result: OperationResult,
    *,
    as_json: bool = False,
    title: str = "",
) -> None:
    """Render an ``OperationResult`` to the terminal."""
    if not result.success:
        err = result.error
        msg = err.message if err else "Unknown error"
        code = err.code if err else "ERROR"
        if as_json:
            console.print_json(json.dumps(result.to_dict(), default=str))
        else:
            err_console.print(f"[bold red]Error[/bold red] ({code}): {msg}", soft_wrap=True)
            request = err.details.get("request") if err else None
            if request:
                err_console.print(f"[dim]Request:[/dim] {request}", soft_wrap=True)
        raise typer.Exit(code=1)

    data = result.data

    if as_json:
        payload = _to_dict(data) if not isinstance(data, list | tuple) else [_to_dict(d) for d in data]
        console.print_json(json.dumps(payload, default=str))
        return

    if isinstance(data, list):
        if not data:
            console.print("[dim]No items.[/dim]")
            return
        _print_table(data, title=title)
    else:
        _print_dict(_to_dict(data), title=title)


def output_paged(
    result: PagedResult,
    *,
    as_json: bool = False,
    title: str = "",
) -> None:
    """Render a ``PagedResult`` to the terminal with pagination info."""
    if not result.success:
        output_result(result, as_json=as_json)
        return

    items = result.data or []

    if as_json:
        payload = {"items": [_to_dict(d) for d in items]}
        payload.update({k: v for k, v in result.to_dict().items() if k not in ("success", "data", "elapsed_ms")})
        console.print_json(json.dumps(payload, default=str))
        return

    if items:
        _print_table(items, title=title)
    else:
        console.print("[dim]No items.[/dim]")

    if result.total is not None:
        console.print(
            f"\n[dim]Page {result.number + 1} of {result.total_pages}"
            f" ({len(items)} of {result.total}, size {result.size})[/dim]"
        )
    else:
        more = "more rows follow" if result.has_next else "last slice"
        console.print(f"\n[dim]Slice {result.number} ({len(items)} rows, {more})[/dim]")


# ── Private helpers ──────────────────────────────────────────────────────


def _print_table(items: list, *, title: str = "") -> None:
    """Render a list of dataclasses/dicts as a Rich table."""
    first = _to_dict(items[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in first:
        table.add_column(str(col), overflow="fold")
    for item in items:
        d = _to_dict(item)
        table.add_row(*(str(v) for v in d.values()))
    console.print(table)


def _print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")
