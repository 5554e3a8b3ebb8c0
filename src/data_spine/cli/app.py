"""
Root Typer application for the data-spine CLI.

    data-spine init
    data-spine add member username=AAA,age=10,team=1
    data-spine get member 1 --fetch team
    data-spine query member "age>=10" --sort -username --page 0 --size 3
    data-spine count member "team.name=teamA"
    data-spine bulk-update member "age>=20" "age=age+1" --reconcile
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import typer
from typer import Typer

from data_spine.associations import ReferenceState, reference_of
from data_spine.cli.parsing import coerce, parse_assignments, parse_predicate, parse_sort, path_type
from data_spine.cli.utils import fail, open_factory, output_paged, output_result
from data_spine.errors import DataSpineError, InvalidRequestError
from data_spine.logging import configure_logging
from data_spine.query import PageRequest, QueryRequest
from data_spine.result import OperationResult, PagedResult, entity_to_dict, start_timer
from data_spine.session import Session
from data_spine.settings import get_settings

app = Typer(
    name="data-spine",
    help="data-spine — structured queries, paging and bulk updates over a SQL store.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("data-spine")
        except PackageNotFoundError:
            v = "0.1.0"
        typer.echo(f"data-spine {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Log level (default: DATA_SPINE_LOG_LEVEL)"),
) -> None:
    """data-spine CLI — inspect and mutate entities through the query engine."""
    settings = get_settings()
    configure_logging(level=log_level or settings.log_level, json_format=settings.log_json)


# ── Helpers ──────────────────────────────────────────────────────────────


def _run(
    database: str | None,
    registry: str | None,
    json_out: bool,
    describe: str,
    body: Callable[[Session], OperationResult],
    *,
    title: str = "",
) -> None:
    """Open a session, run ``body`` in one unit of work and render the outcome."""
    try:
        factory = open_factory(database, registry)
        try:
            with factory.session() as session:
                result = body(session)
        finally:
            factory.store.close()  # type: ignore[attr-defined]
    except DataSpineError as e:
        fail(e, request=describe, as_json=json_out)
        return
    if isinstance(result, PagedResult):
        output_paged(result, as_json=json_out, title=title)
    else:
        output_result(result, as_json=json_out, title=title)


def _fetch_names(fetch: str | None) -> frozenset[str]:
    return frozenset(n.strip() for n in (fetch or "").split(",") if n.strip())


def _render(session: Session, entity: Any, fetched: frozenset[str]) -> dict[str, Any]:
    data = entity_to_dict(session.registry, entity)
    shape = session.registry.shape_of(entity)
    for name in fetched:
        assoc = shape.association(name)
        ref = reference_of(entity, name)
        if assoc is None or ref is None or ref.state is not ReferenceState.RESOLVED or ref.failed:
            continue
        value = ref.peek()
        if assoc.many:
            data[name] = [session.registry.identity_of(v) for v in value]
        elif value is not None:
            data[name] = entity_to_dict(session.registry, value)
    return data


_DATABASE = typer.Option(None, "--database", "-d", help="SQLite database path")
_REGISTRY = typer.Option(None, "--registry", "-r", help="Entity registry as module:attr")
_JSON = typer.Option(False, "--json", help="JSON output")


# ── Commands ─────────────────────────────────────────────────────────────


@app.command()
def init(
    database: str | None = _DATABASE,
    registry: str | None = _REGISTRY,
    json_out: bool = _JSON,
) -> None:
    """Create tables for every registered entity."""

    def body(session: Session) -> OperationResult:
        timer = start_timer()
        tables = session.store.create_tables(session.registry)  # type: ignore[attr-defined]
        return OperationResult.ok({"tables": tables}, elapsed_ms=timer.elapsed_ms)

    _run(database, registry, json_out, "init", body, title="Tables")


@app.command()
def add(
    entity_type: str = typer.Argument(..., help="Registered entity name"),
    values: str = typer.Argument(..., help="field=value pairs, e.g. username=AAA,age=10,team=1"),
    database: str | None = _DATABASE,
    registry: str | None = _REGISTRY,
    json_out: bool = _JSON,
) -> None:
    """Persist a new entity."""

    def body(session: Session) -> OperationResult:
        shape = session.describe(entity_type)
        entity = shape.instantiate()
        for spec in shape.fields:
            setattr(entity, spec.name, None)
        for part in (p for p in values.split(",") if p.strip()):
            name, sep, raw = part.partition("=")
            name = name.strip()
            if not sep:
                raise InvalidRequestError(f"Cannot parse value {part!r} (expected field=value)")
            value = coerce(raw.strip(), path_type(session.registry, shape, name))
            assoc = shape.association(name)
            if assoc is not None and not assoc.many:
                value = session.get(assoc.target, value) if value is not None else None
            elif not shape.has_field(name):
                shape.field(name)
            setattr(entity, name, value)
        session.persist(entity)
        session.flush()
        return OperationResult.ok(entity_to_dict(session.registry, entity))

    _run(database, registry, json_out, f"add {entity_type} {values}", body, title=entity_type)


@app.command()
def get(
    entity_type: str = typer.Argument(..., help="Registered entity name"),
    identity: str = typer.Argument(..., help="Identity value"),
    fetch: str | None = typer.Option(None, "--fetch", "-f", help="Associations to load, comma-separated"),
    database: str | None = _DATABASE,
    registry: str | None = _REGISTRY,
    json_out: bool = _JSON,
) -> None:
    """Show one entity by identity."""

    def body(session: Session) -> OperationResult:
        shape = session.describe(entity_type)
        entity = session.get(shape, coerce(identity, shape.identity.python_type))
        names = _fetch_names(fetch)
        for name in names:
            if shape.association(name) is None:
                shape.field(name)
            getattr(entity, name)
        return OperationResult.ok(_render(session, entity, names))

    _run(database, registry, json_out, f"get {entity_type} {identity}", body, title=entity_type)


@app.command()
def query(
    entity_type: str = typer.Argument(..., help="Registered entity name"),
    predicate: str | None = typer.Argument(None, help="Conditions, e.g. age>=20,username~mem%"),
    sort: str | None = typer.Option(None, "--sort", "-s", help="Sort keys, e.g. -username,age"),
    page: int | None = typer.Option(None, "--page", "-p", help="Page number (runs a count query)"),
    slice_: int | None = typer.Option(None, "--slice", help="Slice number (no count query)"),
    size: int | None = typer.Option(None, "--size", "-n", help="Page/slice size"),
    fetch: str | None = typer.Option(None, "--fetch", "-f", help="Associations to load, comma-separated"),
    select: str | None = typer.Option(None, "--select", help="Return these paths instead of entities"),
    database: str | None = _DATABASE,
    registry: str | None = _REGISTRY,
    json_out: bool = _JSON,
) -> None:
    """Query entities with a predicate, sort, page/slice and fetch hints."""
    if page is not None and slice_ is not None:
        raise typer.BadParameter("--page and --slice are mutually exclusive")

    def body(session: Session) -> OperationResult:
        shape = session.describe(entity_type)
        names = _fetch_names(fetch)
        request = QueryRequest(
            shape.name,
            parse_predicate(predicate, session.registry, shape),
            parse_sort(sort),
            fetch=names,
            projection=tuple(p.strip() for p in select.split(",")) if select else (),
        )

        def render(item: Any) -> Any:
            return item if request.projection else _render(session, item, names)

        timer = start_timer()
        if page is None and slice_ is None:
            items = [render(e) for e in session.execute(request)]
            return OperationResult.ok(items, elapsed_ms=timer.elapsed_ms)

        page_size = size or get_settings().default_page_size
        pageable = PageRequest.of(page if page is not None else slice_, page_size)
        window = session.page(request, pageable) if page is not None else session.slice(request, pageable)
        return PagedResult.from_window(window, [render(e) for e in window.content], elapsed_ms=timer.elapsed_ms)

    _run(database, registry, json_out, f"query {entity_type} {predicate or ''}".strip(), body, title=entity_type)


@app.command()
def count(
    entity_type: str = typer.Argument(..., help="Registered entity name"),
    predicate: str | None = typer.Argument(None, help="Conditions, e.g. age>=20"),
    database: str | None = _DATABASE,
    registry: str | None = _REGISTRY,
    json_out: bool = _JSON,
) -> None:
    """Count entities matching a predicate."""

    def body(session: Session) -> OperationResult:
        shape = session.describe(entity_type)
        total = session.count(shape.name, parse_predicate(predicate, session.registry, shape))
        return OperationResult.ok({"entity": shape.name, "count": total})

    _run(database, registry, json_out, f"count {entity_type} {predicate or ''}".strip(), body, title="Count")


@app.command("bulk-update")
def bulk_update(
    entity_type: str = typer.Argument(..., help="Registered entity name"),
    predicate: str = typer.Argument(..., help="Conditions selecting rows, e.g. age>=20"),
    assignments: str = typer.Argument(..., help="Assignments, e.g. age=age+1"),
    reconcile: bool = typer.Option(False, "--reconcile", help="Drop loaded entities from the session after the write"),
    database: str | None = _DATABASE,
    registry: str | None = _REGISTRY,
    json_out: bool = _JSON,
) -> None:
    """Set-based UPDATE of every matching row."""

    def body(session: Session) -> OperationResult:
        shape = session.describe(entity_type)
        affected = session.bulk_update(
            shape.name,
            parse_predicate(predicate, session.registry, shape),
            parse_assignments(assignments, session.registry, shape),
            auto_reconcile=reconcile,
        )
        return OperationResult.ok({"entity": shape.name, "affected": affected, "reconciled": reconcile})

    _run(
        database,
        registry,
        json_out,
        f"bulk-update {entity_type} {predicate} {assignments}",
        body,
        title="Bulk Update",
    )


if __name__ == "__main__":  # pragma: no cover
    app()
