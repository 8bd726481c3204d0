"""
CLI interface for Prompt Ledger.

Provides command-line access to templates, runs, logs, analytics and config.
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from prompt_ledger.config.loader import SECRET_KEY_PATTERN
from prompt_ledger.core.analytics import (
    export_snapshot,
    filter_records,
    hourly_distribution,
    model_breakdown,
    provider_breakdown,
    summarize,
)
from prompt_ledger.core.errors import IOFailure, NotFound, PromptLedgerError, ValidationFailure
from prompt_ledger.sdk.executor import DEFAULT_TIMEOUT_S, EchoExecutor
from prompt_ledger.service import (
    PromptLedgerService,
    Workspace,
    default_workspace_root,
    initialize_workspace,
)

app = typer.Typer()
prompts_app = typer.Typer(help="Manage prompt templates.")
app.add_typer(prompts_app, name="prompts")

console = Console()

EXIT_CODE_OK = 0
EXIT_CODE_CALLER_ERROR = 1  # NotFound, ValidationFailure, failed model call
EXIT_CODE_IO_ERROR = 2


def _exit_code_for(error: PromptLedgerError) -> int:
    """Convert an error to a CLI exit code."""
    if isinstance(error, IOFailure):
        return EXIT_CODE_IO_ERROR
    return EXIT_CODE_CALLER_ERROR


def _fail(error: PromptLedgerError) -> None:
    label = "Not found" if isinstance(error, NotFound) else "Error"
    console.print(f"[red]{label}:[/] {escape(str(error))}")
    sys.exit(_exit_code_for(error))


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _workspace(ctx: typer.Context) -> Workspace:
    return ctx.obj["workspace"]


def _service(ctx: typer.Context, timeout_s: float = DEFAULT_TIMEOUT_S, offline: bool = False) -> PromptLedgerService:
    service = _workspace(ctx).open(timeout_s=timeout_s)
    if offline:
        service = PromptLedgerService(
            service.templates,
            service.ledger,
            service.config,
            executor_factory=lambda _model: EchoExecutor(),
            timeout_s=timeout_s,
        )
    return service


def _parse_vars(pairs: Optional[List[str]]) -> Dict[str, str]:
    variables = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValidationFailure(f"Invalid variable '{pair}'. Use: name=value")
        variables[key] = value
    return variables


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    workspace: Optional[Path] = typer.Option(
        None,
        "--workspace",
        "-w",
        help="Workspace directory (defaults to $PROMPT_LEDGER_HOME or ./easyai)"
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Show informational log output"),
):
    """Prompt Ledger CLI."""
    _configure_logging(verbose)
    ctx.obj = {"workspace": Workspace(workspace or default_workspace_root())}
    if ctx.invoked_subcommand is None:
        console.print("Prompt Ledger - Use --help to see available commands")


@app.command()
def init(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", "-f", help="Re-initialize an existing workspace"),
    api_key: Optional[str] = typer.Option(None, "--api-key", "-k", help="OpenAI or Anthropic API key"),
):
    """Initialize a workspace with default config and example prompts."""
    workspace = _workspace(ctx)
    try:
        outcome = initialize_workspace(workspace, api_key=api_key, force=force)
    except PromptLedgerError as e:
        _fail(e)

    if outcome == "key-updated":
        console.print("[green]✓[/] API key updated")
        return
    console.print(f"[green]✓[/] Workspace {outcome} at {escape(str(workspace.root))}")
    if not api_key:
        console.print("[yellow]Next:[/] add API keys with `prompt-ledger config --set OPENAI_API_KEY=...`")


@prompts_app.command("list")
def prompts_list(
    ctx: typer.Context,
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Match name, category or content"),
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Only this category"),
):
    """List templates, optionally filtered."""
    try:
        summaries = _service(ctx).list_templates(category=category, search=search)
    except PromptLedgerError as e:
        _fail(e)

    if not summaries:
        console.print("[dim]No prompts found.[/]")
        return

    table = Table(title="Prompts")
    table.add_column("Category", style="cyan")
    table.add_column("Name", style="yellow")
    table.add_column("Variables")
    for summary in summaries:
        table.add_row(summary.category, summary.name, ", ".join(summary.variables))
    console.print(table)


@prompts_app.command("show")
def prompts_show(ctx: typer.Context, category: str, name: str):
    """Print a template's content."""
    try:
        template = _service(ctx).get_template(category, name)
    except PromptLedgerError as e:
        _fail(e)
    console.print(template.content, markup=False, highlight=False)


@prompts_app.command("save")
def prompts_save(
    ctx: typer.Context,
    category: str,
    name: str,
    content: Optional[str] = typer.Option(None, "--content", "-c", help="Template text"),
    file: Optional[Path] = typer.Option(None, "--file", help="Read template text from a file"),
):
    """Create or overwrite a template."""
    try:
        if (content is None) == (file is None):
            raise ValidationFailure("Provide exactly one of --content or --file")
        if file is not None:
            try:
                content = file.read_text(encoding="utf-8")
            except OSError as e:
                raise IOFailure(f"Failed to read {file}: {e}") from e
        _service(ctx).put_template(category, name, content)
    except PromptLedgerError as e:
        _fail(e)
    console.print(f"[green]✓[/] Saved {escape(category)}/{escape(name)}")


@prompts_app.command("delete")
def prompts_delete(ctx: typer.Context, category: str, name: str):
    """Delete a template."""
    try:
        _service(ctx).delete_template(category, name)
    except PromptLedgerError as e:
        _fail(e)
    console.print(f"[green]✓[/] Deleted {escape(category)}/{escape(name)}")


@app.command()
def render(
    ctx: typer.Context,
    category: str,
    name: str,
    var: Optional[List[str]] = typer.Option(None, "--var", help="Variable binding name=value (repeatable)"),
):
    """Render a template without running it."""
    try:
        text = _service(ctx).render_template(category, name, _parse_vars(var))
    except PromptLedgerError as e:
        _fail(e)
    console.print(text, markup=False, highlight=False)


@app.command()
def run(
    ctx: typer.Context,
    name: str,
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model to use (defaults to models.default)"),
    input_text: Optional[str] = typer.Option(None, "--input", "-i", help="Bound to {{input}} and {{code}}"),
    var: Optional[List[str]] = typer.Option(None, "--var", help="Variable binding name=value (repeatable)"),
    category: Optional[str] = typer.Option(None, "--category", help="Category (defaults to custom, then examples)"),
    timeout: float = typer.Option(DEFAULT_TIMEOUT_S, "--timeout", help="Seconds before the call is recorded as a timeout"),
    offline: bool = typer.Option(False, "--offline", help="Echo the prompt instead of calling a provider"),
):
    """Render a stored prompt, run it against a model and record the call."""
    try:
        variables = {}
        if input_text is not None:
            variables.update({"input": input_text, "code": input_text})
        variables.update(_parse_vars(var))

        service = _service(ctx, timeout_s=timeout, offline=offline)
        outcome = service.run_template(name, model=model, variables=variables, category=category)
    except PromptLedgerError as e:
        _fail(e)

    record = outcome.record
    console.print(f"[dim]Model: {escape(record.model)}[/]")
    if not record.success:
        console.print(f"[red]✗ Call failed:[/] {escape(record.error)}")
        sys.exit(EXIT_CODE_CALLER_ERROR)

    console.print("[green]✓ Response:[/]")
    console.print(outcome.text, markup=False, highlight=False)
    console.print(f"[dim]Tokens: {record.tokens} | Duration: {record.duration_ms}ms | Cost: ${record.cost:.6f}[/]")


@app.command()
def playground(
    ctx: typer.Context,
    prompt: str = typer.Argument(..., help="Prompt text; {{name}} placeholders are bound from --var"),
    models: str = typer.Option(..., "--models", "-m", help="Comma-separated models, e.g. gpt-4,claude-3-haiku"),
    var: Optional[List[str]] = typer.Option(None, "--var", help="Variable binding name=value (repeatable)"),
    timeout: float = typer.Option(DEFAULT_TIMEOUT_S, "--timeout", help="Seconds before each call is recorded as a timeout"),
    offline: bool = typer.Option(False, "--offline", help="Echo the prompt instead of calling a provider"),
):
    """Run one prompt against several models and compare the answers."""
    try:
        variables = _parse_vars(var)
        service = _service(ctx, timeout_s=timeout, offline=offline)
        outcomes = service.compare(prompt, models.split(","), variables=variables)
    except PromptLedgerError as e:
        _fail(e)

    table = Table(title="Playground")
    table.add_column("", no_wrap=True)
    table.add_column("Model", style="cyan")
    table.add_column("Tokens", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Cost", justify="right")
    for outcome in outcomes:
        record = outcome.record
        table.add_row(
            "[green]✓[/]" if record.success else "[red]✗[/]",
            escape(record.model),
            str(record.tokens),
            f"{record.duration_ms}ms",
            _format_currency(record.cost),
        )
    console.print(table)

    for outcome in outcomes:
        record = outcome.record
        console.print(f"\n[bold cyan]{escape(record.model)}[/]")
        if record.success:
            console.print(outcome.text, markup=False, highlight=False)
        else:
            console.print(f"[red]Error:[/] {escape(record.error)}")

    if not any(outcome.record.success for outcome in outcomes):
        sys.exit(EXIT_CODE_CALLER_ERROR)


@app.command()
def logs(
    ctx: typer.Context,
    number: int = typer.Option(10, "--number", "-n", help="Number of entries to show"),
    filter_text: Optional[str] = typer.Option(None, "--filter", "-f", help="Match prompt, model or input"),
    status: str = typer.Option("all", "--status", "-s", help="all, success or error"),
):
    """Show recent model calls, newest first."""
    try:
        records = _service(ctx).list_usage(search=filter_text, status=status, limit=number)
    except PromptLedgerError as e:
        _fail(e)

    if not records:
        console.print("[yellow]No API calls logged yet[/]")
        return

    table = Table(title=f"Recent API Calls ({len(records)} entries)")
    table.add_column("", no_wrap=True)
    table.add_column("Time", no_wrap=True)
    table.add_column("Model", style="cyan")
    table.add_column("Prompt", style="yellow")
    table.add_column("Tokens", justify="right")
    table.add_column("Duration", justify="right")
    for record in records:
        table.add_row(
            "[green]✓[/]" if record.success else "[red]✗[/]",
            record.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            escape(record.model),
            escape(record.prompt_ref or "-"),
            str(record.tokens),
            f"{record.duration_ms}ms",
        )
    console.print(table)

    for record in records:
        if record.error:
            console.print(f"[red]Error ({escape(record.prompt_ref or record.model)}):[/] {escape(record.error)}")


def _format_currency(amount: float) -> str:
    """Format currency with four decimals for per-call amounts."""
    return f"${amount:,.4f}"


@app.command()
def analytics(
    ctx: typer.Context,
    days: int = typer.Option(7, "--days", "-d", help="Trailing days in the calls-per-day series"),
    period: Optional[str] = typer.Option(None, "--period", help="today, week, month, year or a number of days"),
    provider: Optional[str] = typer.Option(None, "--provider", help="Filter by provider"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Filter by model"),
    detailed: bool = typer.Option(False, "--detailed", help="Include hourly and per-model detail"),
    export: Optional[str] = typer.Option(None, "--export", help="Write json or csv to the workspace exports folder"),
):
    """Summarize recorded calls."""
    try:
        service = _service(ctx)
        records = filter_records(service.ledger.records(), period=period, provider=provider, model=model)
        snapshot = summarize(records, window_days=days)
        models = model_breakdown(records)
        providers = provider_breakdown(records)

        if export:
            content = export_snapshot(snapshot, models, providers, export)
            export_dir = _workspace(ctx).root / "exports"
            stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
            target = export_dir / f"analytics-{stamp}.{export.lower()}"
            try:
                export_dir.mkdir(parents=True, exist_ok=True)
                target.write_text(content, encoding="utf-8")
            except OSError as e:
                raise IOFailure(f"Failed to write export {target}: {e}") from e
    except PromptLedgerError as e:
        _fail(e)

    if export:
        console.print(f"[green]✓[/] Analytics exported to {escape(str(target))}")
        return

    if snapshot.total_calls == 0:
        console.print("[yellow]No API call logs found[/]")
        return

    console.print("\n[bold]Analytics[/bold]")
    console.print("-" * 40)
    console.print(f"Total API Calls: {snapshot.total_calls:,}")
    console.print(f"Successful: {snapshot.successful_calls:,} | Failed: {snapshot.failed_calls:,}")
    console.print(f"Success Rate: {snapshot.success_rate}%")
    console.print(f"Total Tokens: {snapshot.total_tokens:,}")
    console.print(f"Total Cost: {_format_currency(snapshot.total_cost)}")
    console.print(f"Avg Duration: {snapshot.avg_duration_ms}ms")

    per_day = Table(title=f"Calls per day (last {days}, UTC)")
    per_day.add_column("Day")
    per_day.add_column("Calls", justify="right")
    for day, count in zip(snapshot.days, snapshot.calls_per_day):
        per_day.add_row(day, str(count))
    console.print(per_day)

    by_provider = Table(title="By Provider")
    by_provider.add_column("Provider", style="cyan")
    by_provider.add_column("Calls", justify="right")
    by_provider.add_column("Tokens", justify="right")
    by_provider.add_column("Success", justify="right")
    for name, stats in providers.items():
        by_provider.add_row(name, str(stats.calls), str(stats.tokens), f"{stats.success_rate}%")
    console.print(by_provider)

    by_model = Table(title="Top Models")
    by_model.add_column("Model", style="yellow")
    by_model.add_column("Calls", justify="right")
    by_model.add_column("Avg ms", justify="right")
    for name, stats in list(models.items())[:10]:
        by_model.add_row(escape(name), str(stats.calls), str(stats.avg_duration_ms))
    console.print(by_model)

    if detailed:
        hours = hourly_distribution(records)
        peak = max(hours) or 1
        console.print("\n[bold]Usage by Hour (UTC)[/bold]")
        for hour, count in enumerate(hours):
            if count:
                bar = "█" * round(count / peak * 20)
                console.print(f"{hour:02d}:00 [cyan]{bar}[/] {count}")
        for name, stats in models.items():
            console.print(
                f"\n[bold]{escape(name)}[/bold]\n  Calls: {stats.calls} | Tokens: {stats.tokens:,} "
                f"| Avg Duration: {stats.avg_duration_ms}ms | Cost: {_format_currency(stats.cost)}"
            )


def _export_target(export_dir: Path, kind: str, fmt: str, output: Optional[Path]) -> Path:
    extension = fmt.lower()
    if output is None:
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
        return export_dir / f"{kind}-export-{stamp}.{extension}"
    if output.suffix != f".{extension}":
        output = output.with_name(f"{output.name}.{extension}")
    return output if output.is_absolute() else export_dir / output


@app.command()
def export(
    ctx: typer.Context,
    kind: str = typer.Option("logs", "--type", "-t", help="logs, prompts or config"),
    fmt: str = typer.Option("json", "--format", "-f", help="json, jsonl or csv"),
    filter_text: Optional[str] = typer.Option(None, "--filter", help="Text filter; 'error' or 'success' select log outcomes"),
    period: Optional[str] = typer.Option(None, "--period", "-p", help="today, week, month, year or a number of days (logs only)"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="File name or path (defaults to the exports folder)"),
):
    """Export logs, prompts or configuration to a file."""
    try:
        content, count = _service(ctx).export_data(kind, fmt, filter_text=filter_text, period=period)
        target = _export_target(_workspace(ctx).root / "exports", kind.lower(), fmt, output)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        except OSError as e:
            raise IOFailure(f"Failed to write export {target}: {e}") from e
    except PromptLedgerError as e:
        _fail(e)

    console.print(f"[green]✓[/] Exported {count} {escape(kind.lower())} item(s) to {escape(str(target))}")


@app.command()
def config(
    ctx: typer.Context,
    list_all: bool = typer.Option(False, "--list", "-l", help="Show all settings"),
    get: Optional[str] = typer.Option(None, "--get", help="Show one setting, e.g. ui.theme"),
    set_: Optional[str] = typer.Option(None, "--set", help="Set one setting, e.g. ui.theme=light"),
):
    """Read or change workspace configuration."""
    try:
        store = _service(ctx).config
        if set_:
            key, sep, value = set_.partition("=")
            clears_secret = "." not in key and SECRET_KEY_PATTERN.match(key) is not None
            if not key or not sep or (not value and not clears_secret):
                raise ValidationFailure("Invalid format. Use: key=value")
            store.set_value(key, value)
            console.print(f"[green]✓[/] Updated {escape(key)}")
        elif get:
            console.print(str(store.get_value(get)), markup=False, highlight=False)
        elif list_all:
            current = store.read()
            for branch, values in current.settings.items():
                console.print(f"\n[green]{branch}[/]")
                for key, value in values.items():
                    console.print(f"  {key}: {value}", markup=False, highlight=False)
            console.print("\n[green]secrets[/]")
            for key, value in current.secrets.items():
                console.print(f"  {key}: {value or 'not set'}", markup=False, highlight=False)
        else:
            console.print("[yellow]Please specify an action: --list, --get <key>, or --set <key=value>[/]")
    except PromptLedgerError as e:
        _fail(e)


@app.command()
def prune(ctx: typer.Context):
    """Delete ledger records older than logging.retention."""
    try:
        removed = _service(ctx).prune_expired()
    except PromptLedgerError as e:
        _fail(e)
    console.print(f"[green]✓[/] Pruned {removed} record(s)")


if __name__ == "__main__":
    app()
