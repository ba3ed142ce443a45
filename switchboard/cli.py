"""
Switchboard CLI - Command-line interface for provider routing.

Commands:
- switchboard providers            - List configured providers
- switchboard add / update / remove - Manage providers
- switchboard test [id]            - Test provider connections
- switchboard stats / clear-stats  - Usage statistics
- switchboard default / enable / disable <id>
- switchboard export / import / load - Configuration files
- switchboard models <id>          - List models for a provider
- switchboard generate <prompt>    - Route a generation request
- switchboard metrics              - Print Prometheus metrics
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

import typer
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from adapters.base import GenerationRequest, ProviderConfig, ProviderType, ResponseFormat
from adapters.router import ProviderRouter, ProviderStatus, SelectionStrategy, new_provider_id
from switchboard.config import SwitchboardSettings, load_config_file
from switchboard.errors import SwitchboardError
from switchboard.metrics import get_metrics_text
from switchboard.service import open_router

# Initialize
app = typer.Typer(
    name="switchboard",
    help="Switchboard - Generative provider routing",
    add_completion=False,
)
console = Console()

# Configure logging
logging.basicConfig(
    level=SwitchboardSettings().log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("switchboard.cli")


# ============================================================================
# Helper Functions
# ============================================================================


@asynccontextmanager
async def router_session() -> AsyncIterator[ProviderRouter]:
    """Open a router from fresh settings and close its store afterwards."""
    router = await open_router(SwitchboardSettings())
    try:
        yield router
    finally:
        if router.store is not None:
            await router.store.close()


def run_command(coro: Any) -> None:
    """Run a command coroutine, turning Switchboard errors into exit code 1."""
    try:
        asyncio.run(coro)
    except SwitchboardError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        raise typer.Exit(1)


def parse_settings(pairs: list[str] | None) -> dict[str, Any]:
    """Parse ``key=value`` pairs; values are read as YAML scalars."""
    settings: dict[str, Any] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected key=value, got {pair!r}")
        settings[key.strip()] = yaml.safe_load(value)
    return settings


def parse_api_keys(pairs: list[str] | None) -> dict[str, str]:
    keys: dict[str, str] = {}
    for pair in pairs or []:
        target, sep, key = pair.partition("=")
        if not sep or not target:
            raise typer.BadParameter(f"Expected id_or_type=key, got {pair!r}")
        keys[target.strip()] = key.strip()
    return keys


def mask(api_key: str) -> str:
    if not api_key:
        return "-"
    if len(api_key) <= 8:
        return "****"
    return f"{api_key[:4]}...{api_key[-4:]}"


# ============================================================================
# Registry Commands
# ============================================================================


@app.command("providers")
def list_providers() -> None:
    """List configured providers."""

    async def run() -> None:
        async with router_session() as router:
            providers = router.get_providers()
            default_id = router.config.default_provider_id

        if not providers:
            console.print("[yellow]No providers configured[/yellow]")
            console.print("Add one with: switchboard add --type gemini --api-key ...")
            return

        table = Table(title="Providers")
        table.add_column("ID", style="cyan")
        table.add_column("Name")
        table.add_column("Type")
        table.add_column("Model")
        table.add_column("API Key")
        table.add_column("Enabled", justify="center")
        table.add_column("Default", justify="center")

        for provider in providers:
            table.add_row(
                provider.id,
                provider.name,
                provider.type.value,
                provider.model or "-",
                mask(provider.api_key),
                "[green]●[/green]" if provider.enabled else "[red]○[/red]",
                "★" if provider.id == default_id else "",
            )

        console.print(table)

    run_command(run())


@app.command()
def add(
    provider_type: ProviderType = typer.Option(..., "--type", "-t", help="Provider type"),
    api_key: str = typer.Option(..., "--api-key", "-k", help="Provider API key"),
    provider_id: str = typer.Option(None, "--id", help="Provider id (generated if omitted)"),
    name: str = typer.Option(None, "--name", "-n", help="Display name"),
    model: str = typer.Option("", "--model", "-m", help="Default model"),
    description: str = typer.Option(None, "--description", "-d", help="Description"),
    setting: list[str] = typer.Option(None, "--setting", "-s", help="Backend setting key=value"),
) -> None:
    """Add and validate a provider."""
    config = ProviderConfig(
        id=provider_id or new_provider_id(provider_type),
        name=name or ProviderRouter.get_provider_info(provider_type).name,
        type=provider_type,
        api_key=api_key,
        model=model,
        description=description,
        settings=parse_settings(setting),
    )

    async def run() -> None:
        async with router_session() as router:
            with console.status(f"Validating {config.id}..."):
                await router.add_provider(config)
        console.print(f"[green]Provider {config.id} added[/green]")

    run_command(run())


@app.command()
def update(
    provider_id: str = typer.Argument(..., help="Provider id"),
    api_key: str = typer.Option(None, "--api-key", "-k", help="New API key"),
    name: str = typer.Option(None, "--name", "-n", help="New display name"),
    model: str = typer.Option(None, "--model", "-m", help="New default model"),
    description: str = typer.Option(None, "--description", "-d", help="New description"),
    setting: list[str] = typer.Option(None, "--setting", "-s", help="Backend setting key=value"),
) -> None:
    """Update and re-validate a provider."""

    async def run() -> None:
        async with router_session() as router:
            current = router.get_provider(provider_id)
            if current is None:
                console.print(f"[red]Provider not found: {provider_id}[/red]")
                raise typer.Exit(1)

            changes: dict[str, Any] = {
                key: value
                for key, value in {
                    "api_key": api_key,
                    "name": name,
                    "model": model,
                    "description": description,
                }.items()
                if value is not None
            }
            if setting:
                changes["settings"] = {**current.settings, **parse_settings(setting)}

            with console.status(f"Validating {provider_id}..."):
                await router.update_provider(current.model_copy(update=changes))
        console.print(f"[green]Provider {provider_id} updated[/green]")

    run_command(run())


@app.command()
def remove(provider_id: str = typer.Argument(..., help="Provider id")) -> None:
    """Remove a provider and its statistics."""

    async def run() -> None:
        async with router_session() as router:
            await router.remove_provider(provider_id)
        console.print(f"[green]Provider {provider_id} removed[/green]")

    run_command(run())


@app.command()
def default(provider_id: str = typer.Argument(..., help="Provider id")) -> None:
    """Set the default provider."""

    async def run() -> None:
        async with router_session() as router:
            await router.set_default_provider(provider_id)
        console.print(f"[green]Default provider: {provider_id}[/green]")

    run_command(run())


def _set_enabled(provider_id: str, enabled: bool) -> None:
    async def run() -> None:
        async with router_session() as router:
            current = router.get_provider(provider_id)
            if current is None:
                console.print(f"[red]Provider not found: {provider_id}[/red]")
                raise typer.Exit(1)
            await router.update_provider(
                current.model_copy(update={"enabled": enabled}),
                validate=False,
            )
        state = "enabled" if enabled else "disabled"
        console.print(f"[green]Provider {provider_id} {state}[/green]")

    run_command(run())


@app.command()
def enable(provider_id: str = typer.Argument(..., help="Provider id")) -> None:
    """Enable a provider."""
    _set_enabled(provider_id, True)


@app.command()
def disable(provider_id: str = typer.Argument(..., help="Provider id")) -> None:
    """Disable a provider."""
    _set_enabled(provider_id, False)


# ============================================================================
# Testing & Statistics
# ============================================================================


@app.command()
def test(
    provider_id: str = typer.Argument(None, help="Provider id (all if omitted)"),
    as_json: bool = typer.Option(False, "--json", help="Print results as JSON"),
) -> None:
    """Test provider connections."""

    async def run() -> None:
        async with router_session() as router:
            if provider_id:
                results = [await router.test_provider(provider_id)]
            else:
                results = await router.test_all_providers()

        failed = any(r.status == ProviderStatus.ERROR for r in results)

        if as_json:
            typer.echo(json.dumps([r.to_dict() for r in results], indent=2))
            if failed:
                raise typer.Exit(1)
            return

        if not results:
            console.print("[yellow]No providers configured[/yellow]")
            return

        table = Table(title="Provider Tests")
        table.add_column("Provider", style="cyan")
        table.add_column("Status", justify="center")
        table.add_column("Time (ms)", justify="right")
        table.add_column("Error")

        for result in results:
            ok = result.status == ProviderStatus.ACTIVE
            table.add_row(
                result.provider_id,
                "[green]●[/green]" if ok else "[red]○[/red]",
                f"{result.response_time_ms:.0f}" if result.response_time_ms is not None else "-",
                result.error or "",
            )

        console.print(table)

        if failed:
            raise typer.Exit(1)

    run_command(run())


@app.command()
def stats() -> None:
    """Show usage statistics."""

    async def run() -> None:
        async with router_session() as router:
            usage = router.get_usage_stats()

        if not usage:
            console.print("[yellow]No usage recorded yet[/yellow]")
            return

        table = Table(title="Usage Statistics")
        table.add_column("Provider", style="cyan")
        table.add_column("Requests", justify="right")
        table.add_column("Success", justify="right")
        table.add_column("Failed", justify="right")
        table.add_column("Success Rate", justify="right")
        table.add_column("Avg (ms)", justify="right")
        table.add_column("Tokens", justify="right")
        table.add_column("Last Used")

        for entry in usage:
            table.add_row(
                entry.provider_id,
                str(entry.total_requests),
                str(entry.successful_requests),
                str(entry.failed_requests),
                f"{entry.success_rate:.0%}",
                f"{entry.average_response_time_ms:.0f}",
                str(entry.total_tokens_used),
                entry.last_used_at.strftime("%Y-%m-%d %H:%M:%S") if entry.last_used_at else "-",
            )

        console.print(table)

    run_command(run())


@app.command("clear-stats")
def clear_stats() -> None:
    """Reset usage statistics."""

    async def run() -> None:
        async with router_session() as router:
            await router.clear_usage_stats()
        console.print("[green]Usage statistics cleared[/green]")

    run_command(run())


# ============================================================================
# Configuration Files
# ============================================================================


@app.command()
def export(
    output: Path = typer.Option(None, "--output", "-o", help="Write to file instead of stdout"),
) -> None:
    """Export provider configuration without API keys."""

    async def run() -> None:
        async with router_session() as router:
            document = router.export_config()

        if output:
            output.write_text(document, encoding="utf-8")
            console.print(f"[green]Exported to {output}[/green]")
        else:
            typer.echo(document)

    run_command(run())


@app.command("import")
def import_config(
    path: Path = typer.Argument(..., help="Export document to import"),
    api_key: list[str] = typer.Option(
        None, "--api-key", "-k", help="Credential as id_or_type=key"
    ),
) -> None:
    """Import an exported configuration, validating each provider."""
    try:
        document = path.read_text(encoding="utf-8")
    except OSError as e:
        console.print(f"[red]Cannot read {path}: {e}[/red]")
        raise typer.Exit(1)

    keys = parse_api_keys(api_key)

    async def run() -> None:
        async with router_session() as router:
            imported = await router.import_config(document, api_keys=keys)
        console.print(f"[green]Imported {len(imported)} providers[/green]")
        for config in imported:
            console.print(f"  {config.id} ({config.type.value})")

    run_command(run())


@app.command()
def load(path: Path = typer.Argument(..., help="YAML or JSON router config")) -> None:
    """Replace the whole router configuration from a file."""

    async def run() -> None:
        config = load_config_file(path)
        async with router_session() as router:
            router.reconfigure(config)
            await router.save_config()
        console.print(f"[green]Loaded {len(config.providers)} providers from {path}[/green]")

    run_command(run())


# ============================================================================
# Generation
# ============================================================================


@app.command()
def models(provider_id: str = typer.Argument(..., help="Provider id")) -> None:
    """List models available to a provider."""

    async def run() -> None:
        async with router_session() as router:
            available = await router.list_models(provider_id)

        table = Table(title=f"Models for {provider_id}")
        table.add_column("ID", style="cyan")
        table.add_column("Name")
        table.add_column("Context", justify="right")

        for info in available:
            table.add_row(info.id, info.name, str(info.context_length or "-"))

        console.print(table)

    run_command(run())


@app.command()
def generate(
    prompt: str = typer.Argument(..., help="Prompt text"),
    strategy: SelectionStrategy = typer.Option(
        SelectionStrategy.DEFAULT, "--strategy", "-S", help="Selection strategy"
    ),
    response_format: ResponseFormat = typer.Option(
        None, "--format", "-f", help="Response format"
    ),
    model: str = typer.Option(None, "--model", "-m", help="Override model"),
    max_tokens: int = typer.Option(None, "--max-tokens", help="Max output tokens"),
    temperature: float = typer.Option(None, "--temperature", help="Sampling temperature"),
    as_json: bool = typer.Option(False, "--json", help="Print the response as JSON"),
) -> None:
    """Route a generation request and print the response."""
    request = GenerationRequest(
        prompt=prompt,
        model=model,
        max_tokens=max_tokens,
        temperature=temperature,
        response_format=response_format,
    )

    async def run() -> None:
        async with router_session() as router:
            response = await router.generate_content(request, strategy)

        meta = response.metadata
        if as_json:
            typer.echo(
                json.dumps(
                    {
                        "content": response.content,
                        "provider": meta.provider,
                        "model": meta.model,
                        "responseTime": meta.response_time_ms,
                        "finishReason": meta.finish_reason,
                        "usage": response.usage.to_dict() if response.usage else None,
                    },
                    ensure_ascii=False,
                    indent=2,
                )
            )
            return

        if isinstance(response.content, str):
            console.print(Panel(response.content, title=f"{meta.provider} / {meta.model}"))
        else:
            console.print(Panel.fit(f"{meta.provider} / {meta.model}"))
            console.print_json(json.dumps(response.content, ensure_ascii=False))
        console.print(f"[dim]{meta.response_time_ms:.0f}ms, finish: {meta.finish_reason}[/dim]")

    run_command(run())


@app.command()
def metrics() -> None:
    """Print Prometheus metrics for this process."""
    typer.echo(get_metrics_text())


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
