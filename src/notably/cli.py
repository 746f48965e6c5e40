"""Notably CLI - Command-line interface for the temporal fact store.

Writes, reads and time-travels over facts held in a DuckDB database.

Usage:
    notably --database facts.duckdb init
    notably -d facts.duckdb put tenant-1#users row-42 '{"name": "Ada"}' --json --id r42
    notably -d facts.duckdb get r42
    notably -d facts.duckdb history tenant-1#users row-42 --asc
    notably -d facts.duckdb snapshot tenant-1#users --at 2024-05-01T12:00:00
    notably -d facts.duckdb delete r42

The database defaults to NOTABLY_STORE_DATABASE. Entry point configured in
pyproject.toml as 'notably'.
"""

import json
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Optional

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from notably import __version__
from notably.common.config import config
from notably.common.errors import FactStoreError
from notably.common.logging import configure_logging
from notably.common.metrics import initialize_metrics
from notably.models import DataType, Fact, QueryOptions, QueryResult
from notably.store import FactStore, create_store

app = typer.Typer(
    name="notably",
    help="Write, query and time-travel over versioned facts.",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()

_state: dict[str, Any] = {}


def _parse_datetime(dt_str: str) -> datetime:
    """Parse ISO 8601 or YYYY-MM-DD[ HH:MM:SS]; naive values are UTC."""
    try:
        return datetime.fromisoformat(dt_str)
    except ValueError:
        pass

    for fmt in ("%Y-%m-%d", "%Y-%m-%d %H:%M:%S"):
        try:
            return datetime.strptime(dt_str, fmt)
        except ValueError:
            continue
    raise typer.BadParameter(
        f"Invalid datetime format: {dt_str}. Use ISO 8601 or YYYY-MM-DD HH:MM:SS"
    )


@contextmanager
def _open_store() -> Iterator[FactStore]:
    settings = config.model_copy(
        update={
            "store": config.store.model_copy(
                update={
                    "backend": "duckdb",
                    "database": _state.get("database") or config.store.database,
                    "table_name": _state.get("table") or config.store.table_name,
                }
            )
        }
    )
    with create_store(settings) as store:
        yield store


def _fail(e: Exception) -> None:
    console.print(f"[red]Error: {e}[/red]")
    raise typer.Exit(1)


def _format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


def _fact_table(facts: list[Fact], title: str, keys: Optional[list[str]] = None) -> Table:
    table = Table(title=title, box=box.ROUNDED)
    if keys is not None:
        table.add_column("Key", style="cyan")
    table.add_column("Id", style="cyan")
    table.add_column("Namespace", style="green")
    table.add_column("Field")
    table.add_column("Timestamp")
    table.add_column("Type")
    table.add_column("Value", style="yellow")
    table.add_column("Deleted", justify="center")

    for i, fact in enumerate(facts):
        row = [
            fact.id,
            fact.namespace,
            fact.field_name,
            fact.timestamp.isoformat(),
            fact.data_type,
            _format_value(fact.value),
            "yes" if fact.is_deleted else "",
        ]
        if keys is not None:
            row.insert(0, keys[i])
        table.add_row(*row)
    return table


def _print_result(result: QueryResult, title: str, output: str) -> None:
    if output == "json":
        typer.echo(
            json.dumps(
                {
                    "facts": [fact.to_dict() for fact in result.facts],
                    "continuationToken": result.continuation_token,
                },
                indent=2,
                default=str,
            )
        )
        return

    if not result.facts:
        console.print("[yellow]No facts found matching criteria[/yellow]")
        return

    console.print(_fact_table(result.facts, f"{title} ({len(result)} facts)"))
    if result.has_more:
        console.print(f"[dim]More results: --token {result.continuation_token}[/dim]")


def _query_options(
    start: Optional[str],
    end: Optional[str],
    limit: Optional[int],
    ascending: bool,
    token: Optional[str],
) -> QueryOptions:
    return QueryOptions(
        start_time=_parse_datetime(start) if start else None,
        end_time=_parse_datetime(end) if end else None,
        sort_ascending=ascending,
        limit=limit,
        continuation_token=token,
    )


@app.callback()
def main(
    database: Optional[str] = typer.Option(
        None, "--database", "-d", help="DuckDB database path (default: NOTABLY_STORE_DATABASE)"
    ),
    table: Optional[str] = typer.Option(None, "--table", help="Facts table name"),
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Log level for stderr (default: NOTABLY_OBSERVABILITY_LOG_LEVEL)"
    ),
):
    """Notably temporal fact store."""
    _state["database"] = database
    _state["table"] = table
    configure_logging(
        json_output=config.observability.json_logs,
        log_level=log_level or config.observability.log_level,
    )
    initialize_metrics(__version__, config.environment)


@app.command()
def init():
    """
    Create the facts table (safe to run repeatedly).

    Examples:
        notably -d facts.duckdb init
    """
    try:
        with _open_store() as store:
            store.initialize()
    except FactStoreError as e:
        _fail(e)

    database = _state.get("database") or config.store.database
    console.print(f"[green]Initialized fact store[/green] {database}")


@app.command()
def put(
    namespace: str = typer.Argument(..., help="Namespace of the field"),
    field_name: str = typer.Argument(..., help="Field name within the namespace"),
    value: str = typer.Argument(..., help="Value to write"),
    fact_id: Optional[str] = typer.Option(None, "--id", help="Fact id (default: random UUID)"),
    data_type: Optional[str] = typer.Option(None, "--type", "-t", help="Data type tag"),
    at: Optional[str] = typer.Option(None, "--at", help="Version timestamp (default: now)"),
    as_json: bool = typer.Option(False, "--json", help="Parse VALUE as JSON"),
):
    """
    Write a new version of a field.

    Examples:
        notably put tenant-1#users row-42 Ada --id r42
        notably put tenant-1#users row-42 '{"name": "Ada"}' --json --at 2024-05-01
    """
    parsed: Any = value
    if as_json:
        try:
            parsed = json.loads(value)
        except ValueError as e:
            raise typer.BadParameter(f"VALUE is not valid JSON: {e}")

    fact = Fact(
        id=fact_id or str(uuid.uuid4()),
        timestamp=_parse_datetime(at) if at else datetime.now().astimezone(),
        namespace=namespace,
        field_name=field_name,
        data_type=data_type or (DataType.JSON.value if as_json else DataType.STRING.value),
        value=parsed,
    )

    try:
        with _open_store() as store:
            store.put_fact(fact)
    except FactStoreError as e:
        _fail(e)

    typer.echo(fact.id)


@app.command()
def get(
    fact_id: str = typer.Argument(..., help="Fact id"),
    output: str = typer.Option("table", "--output", "-o", help="Output format: table, json"),
):
    """
    Show the latest version written under an id.

    Examples:
        notably get r42
        notably get r42 -o json
    """
    try:
        with _open_store() as store:
            fact = store.get_fact(fact_id)
    except FactStoreError as e:
        _fail(e)

    if output == "json":
        typer.echo(json.dumps(fact.to_dict(), indent=2, default=str))
    else:
        console.print(_fact_table([fact], f"Fact {fact_id}"))


@app.command()
def delete(
    fact_id: str = typer.Argument(..., help="Fact id"),
):
    """
    Tombstone the latest version written under an id.

    History is kept; the field disappears from later snapshots.
    """
    try:
        with _open_store() as store:
            tombstone = store.delete_fact(fact_id)
    except FactStoreError as e:
        _fail(e)

    console.print(
        f"[green]Deleted[/green] {tombstone.namespace}/{tombstone.field_name} "
        f"at {tombstone.timestamp.isoformat()}"
    )


@app.command()
def history(
    namespace: str = typer.Argument(..., help="Namespace"),
    field_name: str = typer.Argument(..., help="Field name"),
    start: Optional[str] = typer.Option(None, "--start", help="Inclusive start time"),
    end: Optional[str] = typer.Option(None, "--end", help="Inclusive end time"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Maximum facts per page"),
    ascending: bool = typer.Option(False, "--asc", help="Oldest first"),
    token: Optional[str] = typer.Option(None, "--token", help="Continuation token"),
    output: str = typer.Option("table", "--output", "-o", help="Output format: table, json"),
):
    """
    List every version of one field, tombstones included.

    Examples:
        notably history tenant-1#users row-42 --asc
        notably history tenant-1#users row-42 -n 10 --token <token>
    """
    try:
        options = _query_options(start, end, limit, ascending, token)
        with _open_store() as store:
            result = store.query_by_field(namespace, field_name, options)
    except FactStoreError as e:
        _fail(e)

    _print_result(result, f"History of {namespace}/{field_name}", output)


@app.command(name="namespace")
def namespace_cmd(
    namespace: str = typer.Argument(..., help="Namespace"),
    start: Optional[str] = typer.Option(None, "--start", help="Inclusive start time"),
    end: Optional[str] = typer.Option(None, "--end", help="Inclusive end time"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Maximum facts per page"),
    ascending: bool = typer.Option(False, "--asc", help="Oldest first"),
    token: Optional[str] = typer.Option(None, "--token", help="Continuation token"),
    output: str = typer.Option("table", "--output", "-o", help="Output format: table, json"),
):
    """
    List versions of every field in a namespace.

    Examples:
        notably namespace tenant-1#users --start 2024-05-01 --end 2024-05-31
    """
    try:
        options = _query_options(start, end, limit, ascending, token)
        with _open_store() as store:
            result = store.query_by_namespace(namespace, options)
    except FactStoreError as e:
        _fail(e)

    _print_result(result, f"Namespace {namespace}", output)


@app.command()
def timeline(
    start: Optional[str] = typer.Option(None, "--start", help="Inclusive start time"),
    end: Optional[str] = typer.Option(None, "--end", help="Inclusive end time"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Maximum facts per page"),
    ascending: bool = typer.Option(False, "--asc", help="Oldest first"),
    token: Optional[str] = typer.Option(None, "--token", help="Continuation token"),
    output: str = typer.Option("table", "--output", "-o", help="Output format: table, json"),
):
    """
    List versions across all namespaces within a time window.

    Examples:
        notably timeline --start "2024-05-01 09:00:00" --end "2024-05-01 17:00:00"
    """
    try:
        options = _query_options(start, end, limit, ascending, token)
        with _open_store() as store:
            result = store.query_by_time_range(options)
    except FactStoreError as e:
        _fail(e)

    _print_result(result, "Timeline", output)


@app.command()
def snapshot(
    namespace: str = typer.Argument("", help="Namespace (omit for all namespaces)"),
    at: Optional[str] = typer.Option(None, "--at", help="Instant to reconstruct (default: now)"),
    output: str = typer.Option("table", "--output", "-o", help="Output format: table, json"),
):
    """
    Show live state as of an instant; deleted fields are absent.

    Examples:
        notably snapshot tenant-1#users --at 2024-05-01T12:00:00
        notably snapshot -o json
    """
    instant = _parse_datetime(at) if at else datetime.now().astimezone()

    try:
        with _open_store() as store:
            state = store.get_snapshot_at_time(namespace, instant)
    except FactStoreError as e:
        _fail(e)

    keys = sorted(state)
    labels = [str(k) for k in keys]

    if output == "json":
        typer.echo(
            json.dumps(
                {label: state[key].to_dict() for label, key in zip(labels, keys)},
                indent=2,
                default=str,
            )
        )
        return

    if not state:
        console.print("[yellow]Snapshot is empty[/yellow]")
        return

    title = f"Snapshot of {namespace or 'all namespaces'} at {instant.isoformat()}"
    console.print(_fact_table([state[key] for key in keys], title, keys=labels))


if __name__ == "__main__":
    app()
