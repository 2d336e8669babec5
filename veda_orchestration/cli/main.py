"""Command line interface for the verification orchestrator using Typer and Rich."""

import asyncio
import json
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from veda_orchestration.agents.http_agent import build_http_agents
from veda_orchestration.agents.registry import AgentRegistry
from veda_orchestration.config.logging import configure_logging, get_logger
from veda_orchestration.config.settings import settings
from veda_orchestration.orchestration.orchestrator import Orchestrator
from veda_orchestration.orchestration.router import RequestRouter
from veda_orchestration.schemas.orchestration import OrchestrationResult
from veda_orchestration.schemas.request import ContentKind, Priority, VerificationRequest

app = typer.Typer(
    help="Veda orchestration CLI - route and verify content across specialized agents",
    add_completion=False,
)

console = Console()

logger = get_logger("cli")


async def _build_registry() -> AgentRegistry:
    registry = AgentRegistry()
    for agent in build_http_agents():
        await registry.register_agent(agent)
    return registry


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override VEDA_LOG_LEVEL"),
) -> None:
    configure_logging(level=log_level)


@app.command()
def status() -> None:
    """
    Display orchestration configuration.

    Shows retry policy, consensus settings, cache and configured agents.
    """
    logger.info("Displaying orchestration status")

    table = Table(title="Veda Orchestration Status", show_header=True, header_style="bold magenta")
    table.add_column("Component", style="cyan", width=20)
    table.add_column("Status", style="green", width=15)
    table.add_column("Details", style="yellow")

    agent_status = f"✓ {len(settings.agent_endpoints)} configured" if settings.agent_endpoints else "⚠ None"
    table.add_row("Agents", agent_status, ", ".join(settings.agent_endpoints) or "set VEDA_AGENT_ENDPOINTS")

    retry_details = (
        f"timeout {settings.default_timeout_ms}ms, {settings.max_retries} retries, "
        f"backoff {settings.backoff_base_ms}-{settings.backoff_max_ms}ms"
    )
    table.add_row("Workflow", "✓ Ready", retry_details)
    table.add_row("Consensus", "✓ Ready", f"threshold {settings.consensus_threshold}")

    cache_status = "✓ Enabled" if settings.cache_enabled else "✗ Disabled"
    table.add_row("Result Cache", cache_status, f"TTL {settings.cache_ttl:.0f}s")

    alert_status = "✓ Enabled" if settings.enable_alerts else "✗ Disabled"
    table.add_row("Health Alerts", alert_status, f"poll every {settings.health_check_interval:.0f}s")

    table.add_row("Logging", "✓ Active", f"Level: {settings.log_level}, Format: {settings.log_format}")

    console.print(table)


@app.command()
def route(
    content: str = typer.Argument(..., help="Content to route"),
    kind: ContentKind = typer.Option(ContentKind.UNKNOWN, "--kind", "-k", help="Content kind"),
    priority: Priority = typer.Option(Priority.MEDIUM, "--priority", "-p"),
    language: Optional[str] = typer.Option(None, "--language", "-l"),
    platform: Optional[str] = typer.Option(None, "--platform"),
) -> None:
    """Show which agents would handle the content, and in what order."""

    async def _route():
        registry = await _build_registry()
        async with registry:
            request = VerificationRequest(
                content=content,
                content_kind=kind,
                priority=priority,
                metadata={"language": language, "platform": platform},
            )
            return await RequestRouter(registry).route(request)

    try:
        decision = asyncio.run(_route())
    except ValueError as e:
        console.print(f"[red]✗[/red] Invalid request: {e}")
        raise typer.Exit(1)

    table = Table(title="Routing Decision", show_header=True, header_style="bold magenta")
    table.add_column("#", style="dim", width=4)
    table.add_column("Agent", style="cyan")
    for position, agent_id in enumerate(decision.execution_order, start=1):
        table.add_row(str(position), agent_id)

    console.print(table)
    console.print(f"[yellow]Estimated time:[/yellow] {decision.estimated_time}ms")
    console.print(f"[dim]{decision.reasoning}[/dim]")


@app.command()
def verify(
    content: str = typer.Argument(..., help="Content to verify"),
    kind: ContentKind = typer.Option(ContentKind.UNKNOWN, "--kind", "-k", help="Content kind"),
    priority: Priority = typer.Option(Priority.MEDIUM, "--priority", "-p"),
    language: Optional[str] = typer.Option(None, "--language", "-l"),
    as_json: bool = typer.Option(False, "--json", help="Print the raw result as JSON"),
) -> None:
    """Verify content with every configured agent and print the decision."""
    logger.info("Verify command invoked", content_kind=kind.value, priority=priority.value)

    async def _verify() -> OrchestrationResult:
        registry = await _build_registry()
        async with Orchestrator(registry) as orchestrator:
            return await orchestrator.verify_content(
                content,
                content_kind=kind,
                metadata={"language": language} if language else None,
                priority=priority,
            )

    with console.status("[dim]Running verification...[/dim]"):
        result = asyncio.run(_verify())

    if as_json:
        console.print_json(json.dumps(result.model_dump(mode="json")))
        raise typer.Exit(0 if result.success else 1)

    if not result.success or result.decision is None:
        console.print(f"\n[red]✗[/red] Verification failed: {result.error}")
        raise typer.Exit(1)

    decision = result.decision
    console.print(Panel(
        f"[bold]{decision.final_verdict.value}[/bold]\n"
        f"Confidence: {decision.confidence:.2f} ({decision.certainty.value})\n"
        f"Risk: {decision.risk_assessment.level.value}",
        title="Verdict",
        border_style="green" if decision.risk_assessment.level.value == "low" else "yellow",
    ))

    table = Table(title="Agent Votes", show_header=True, header_style="bold magenta")
    table.add_column("Agent", style="cyan")
    table.add_column("Verdict", style="yellow")
    table.add_column("Confidence", justify="right")
    table.add_column("Weight", justify="right")
    if result.aggregation is not None:
        for contribution in result.aggregation.agent_contributions:
            table.add_row(
                contribution.agent_id,
                contribution.verdict.value,
                f"{contribution.confidence:.2f}",
                f"{contribution.weight:.2f}",
            )
    console.print(table)

    for recommendation in decision.recommendations:
        console.print(f"  • {recommendation}")
    console.print(f"\n[dim]{decision.reasoning}[/dim]")
    console.print(f"[dim]Processed in {result.processing_time:.0f}ms[/dim]")


@app.command()
def version() -> None:
    """Display version information."""
    console.print("[bold]Veda Orchestration[/bold]")
    console.print("Version: 0.1.0")


if __name__ == "__main__":
    app()
