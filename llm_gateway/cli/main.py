"""
CLI interface for the LLM Gateway.

Provides command-line access to configurations, completions and pricing.
"""

import asyncio
import dataclasses
import sys
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from llm_gateway.app import GatewayContext, create_context
from llm_gateway.config.loader import load_settings
from llm_gateway.core.errors import GatewayError
from llm_gateway.logging_config import setup_logging
from llm_gateway.sdk.gateway import CompletionResult, Message
from llm_gateway.storage.blobs import initialize_schema
from llm_gateway.storage.models import ProviderConfig

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a YAML settings file"
    ),
):
    """LLM Gateway CLI."""
    try:
        settings = load_settings(config)
    except Exception as e:
        console.print(f"[red]Error loading settings:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    setup_logging(settings.log_level)
    ctx.obj = settings

    if ctx.invoked_subcommand is None:
        console.print("LLM Gateway - Use --help to see available commands")


def _get_context(ctx: typer.Context) -> GatewayContext:
    """Build the application context for a command, exiting on failure."""
    try:
        return create_context(ctx.obj)
    except GatewayError as e:
        console.print(f"[red]Error opening storage:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


def _require_config(context: GatewayContext, config_id: str) -> ProviderConfig:
    config = context.configs.get(config_id)
    if config is None:
        console.print(f"[red]Error:[/] configuration '{config_id}' not found")
        sys.exit(EXIT_CODE_FAIL)
    return config


@app.command()
def init(ctx: typer.Context):
    """Initialize the gateway database."""
    try:
        initialize_schema(ctx.obj.db_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command(name="list")
def list_configs(ctx: typer.Context):
    """List provider configurations."""
    context = _get_context(ctx)
    configs = context.configs.get_all()

    if not configs:
        console.print("\n[bold yellow]No LLM configurations yet[/]")
        console.print("\nAdd one with `llm-gateway add --name ... --api-key ... --model ...`\n")
        return

    table = Table(title="LLM Configurations")
    table.add_column("", width=1)
    table.add_column("ID", no_wrap=True)
    table.add_column("Name", no_wrap=True)
    table.add_column("Model", no_wrap=True)
    table.add_column("Endpoint")
    table.add_column("API key", no_wrap=True)
    table.add_column("Pricing")

    for config in configs:
        table.add_row(
            "✓" if context.selection.is_selected(config.id) else "",
            config.id,
            config.name,
            config.model,
            config.base_url or "[dim]default[/]",
            config.masked_api_key(),
            _price_info(context, config),
        )

    console.print(table)


def _price_info(context: GatewayContext, config: ProviderConfig) -> str:
    pricing = context.pricing.get_pricing(config.model)
    if pricing is not None:
        return f"Input: ${pricing.input_price}/1k | Output: ${pricing.output_price}/1k"
    if config.cost_per_1k_tokens is not None:
        return f"Flat: ${config.cost_per_1k_tokens}/1k"
    return "Pricing not available"


def _save_config(context: GatewayContext, config: ProviderConfig, test: bool) -> None:
    """Optionally probe a candidate config, then persist it."""
    if test:
        console.print(f"Testing connection to {config.model}...")
        if not asyncio.run(context.gateway.test_connection(config)):
            console.print("[red]Connection test failed, configuration not saved[/]")
            sys.exit(EXIT_CODE_FAIL)

    try:
        context.configs.upsert(config)
    except GatewayError as e:
        console.print(f"[red]Failed to save configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def add(
    ctx: typer.Context,
    name: str = typer.Option(..., "--name", "-n", help="Display name"),
    api_key: str = typer.Option(..., "--api-key", "-k", help="Provider API key"),
    model: str = typer.Option(..., "--model", "-m", help="Model identifier"),
    max_tokens: int = typer.Option(1000, "--max-tokens", help="Maximum tokens to generate"),
    temperature: float = typer.Option(0.7, "--temperature", "-t", help="Sampling temperature (0-2)"),
    base_url: Optional[str] = typer.Option(None, "--base-url", help="Completion endpoint override"),
    cost_per_1k: Optional[float] = typer.Option(
        None,
        "--cost-per-1k",
        help="Flat cost per 1K tokens for models without pricing"
    ),
    test: bool = typer.Option(True, "--test/--no-test", help="Test the connection before saving"),
):
    """Add a provider configuration."""
    context = _get_context(ctx)
    try:
        config = ProviderConfig.create(
            name=name,
            api_key=api_key,
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            base_url=base_url,
            cost_per_1k_tokens=cost_per_1k,
        )
    except ValueError as e:
        console.print(f"[red]Invalid configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    _save_config(context, config, test)
    console.print(f"[green]✓[/] Saved configuration {config.id}")


@app.command()
def edit(
    ctx: typer.Context,
    config_id: str = typer.Argument(..., help="Configuration id"),
    name: Optional[str] = typer.Option(None, "--name", "-n"),
    api_key: Optional[str] = typer.Option(None, "--api-key", "-k"),
    model: Optional[str] = typer.Option(None, "--model", "-m"),
    max_tokens: Optional[int] = typer.Option(None, "--max-tokens"),
    temperature: Optional[float] = typer.Option(None, "--temperature", "-t"),
    base_url: Optional[str] = typer.Option(None, "--base-url", help="Endpoint override; \"\" restores the default"),
    cost_per_1k: Optional[float] = typer.Option(None, "--cost-per-1k"),
    clear_cost: bool = typer.Option(False, "--clear-cost", help="Remove the flat cost per 1K tokens"),
    test: bool = typer.Option(True, "--test/--no-test", help="Test the connection before saving"),
):
    """Edit a provider configuration."""
    context = _get_context(ctx)
    existing = _require_config(context, config_id)

    changes = {
        "name": name,
        "api_key": api_key,
        "model": model,
        "max_tokens": max_tokens,
        "temperature": temperature,
        "base_url": base_url,
        "cost_per_1k_tokens": cost_per_1k,
    }
    updates = {key: value for key, value in changes.items() if value is not None}
    if base_url == "":
        updates["base_url"] = None
    if clear_cost:
        if cost_per_1k is not None:
            console.print("[red]Error:[/] --cost-per-1k and --clear-cost cannot be combined")
            sys.exit(EXIT_CODE_FAIL)
        updates["cost_per_1k_tokens"] = None

    try:
        config = dataclasses.replace(existing, **updates)
    except ValueError as e:
        console.print(f"[red]Invalid configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    _save_config(context, config, test)
    console.print(f"[green]✓[/] Updated configuration {config.id}")


@app.command()
def remove(
    ctx: typer.Context,
    config_id: str = typer.Argument(..., help="Configuration id"),
):
    """Delete a provider configuration."""
    context = _get_context(ctx)
    try:
        context.delete_config(config_id)
    except GatewayError as e:
        console.print(f"[red]Failed to delete configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Deleted configuration {config_id}")


@app.command()
def select(
    ctx: typer.Context,
    config_id: str = typer.Argument(..., help="Configuration id"),
):
    """Toggle whether a configuration is selected."""
    context = _get_context(ctx)
    _require_config(context, config_id)
    try:
        selected = context.selection.toggle(config_id)
    except GatewayError as e:
        console.print(f"[red]Failed to update selection:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    state = "selected" if selected else "deselected"
    console.print(f"[green]✓[/] Configuration {config_id} {state}")


@app.command()
def test(
    ctx: typer.Context,
    config_id: str = typer.Argument(..., help="Configuration id"),
):
    """Test the connection of a configuration."""
    context = _get_context(ctx)
    config = _require_config(context, config_id)

    if asyncio.run(context.gateway.test_connection(config)):
        console.print(f"[green]✓[/] {config.name} is reachable")
        sys.exit(EXIT_CODE_PASS)
    console.print(f"[red]✗[/] {config.name} failed the connection test")
    sys.exit(EXIT_CODE_FAIL)


@app.command()
def send(
    ctx: typer.Context,
    message: str = typer.Argument(..., help="User message to send"),
    config_ids: Optional[List[str]] = typer.Option(
        None,
        "--config-id",
        "-i",
        help="Configuration to use (repeatable); defaults to the selected ones"
    ),
    system: Optional[str] = typer.Option(None, "--system", "-s", help="System prompt"),
):
    """Send a message to one or more configurations."""
    context = _get_context(ctx)
    ids = list(config_ids or context.selection.selected_ids())
    if not ids:
        console.print("[yellow]No configuration given and none selected[/]")
        console.print("Use --config-id or `llm-gateway select ID` first")
        sys.exit(EXIT_CODE_FAIL)

    messages = []
    if system:
        messages.append(Message(role="system", content=system))
    messages.append(Message(role="user", content=message))

    results = asyncio.run(context.gateway.complete_many(ids, messages))

    failed = False
    total_cost = 0.0
    for config_id, outcome in results.items():
        if isinstance(outcome, CompletionResult):
            total_cost += outcome.cost
            _display_result(context, config_id, outcome)
        else:
            failed = True
            console.print(f"\n[bold]{config_id}[/bold]")
            console.print(f"[red]{type(outcome).__name__}:[/] {str(outcome)}")

    if len(results) > 1:
        console.print(f"\n[bold]Total cost:[/bold] {_format_currency(total_cost)}")

    sys.exit(EXIT_CODE_FAIL if failed else EXIT_CODE_PASS)


@app.command()
def prices(
    ctx: typer.Context,
    refresh: bool = typer.Option(
        False,
        "--refresh",
        "-r",
        help="Refresh prices from the feed first if they are stale"
    ),
):
    """Show the pricing table."""
    context = _get_context(ctx)

    if refresh:
        if context.pricing.refresh_if_stale():
            console.print("[green]✓[/] Prices refreshed")
        elif context.pricing.is_stale():
            console.print("[yellow]Prices are stale and could not be refreshed[/]")
        else:
            console.print("[dim]Prices are up to date[/]")

    table = Table(title="LLM Pricing (per 1K tokens)")
    table.add_column("Model", no_wrap=True)
    table.add_column("Input", justify="right")
    table.add_column("Output", justify="right")
    table.add_column("Last updated")

    for model, entry in sorted(context.pricing.get_all_prices().items()):
        table.add_row(
            model,
            f"${entry.input_price}",
            f"${entry.output_price}",
            entry.last_updated.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


def _format_currency(amount: float) -> str:
    """Format a cost with enough precision for sub-cent amounts."""
    return f"${amount:,.6f}"


def _display_result(context: GatewayContext, config_id: str, result: CompletionResult) -> None:
    config = context.configs.get(config_id)
    label = config.name if config is not None else config_id

    console.print(f"\n[bold]{label}[/bold] [dim]({result.model})[/]")
    console.print(result.content, markup=False)
    console.print(
        f"[dim]Tokens: {result.usage.prompt_tokens} prompt + "
        f"{result.usage.completion_tokens} completion = {result.usage.total_tokens} | "
        f"Cost: {_format_currency(result.cost)}[/]"
    )


if __name__ == "__main__":
    app()
