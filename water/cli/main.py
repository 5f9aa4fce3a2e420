"""Main CLI interface using Typer."""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from .. import APP_NAME, __version__
from ..database import RunHistoryService
from ..errors import ClusterUnavailable, ConfigError, NoStableVersions, ReleaseIndexUnavailable, WaterError
from ..k8s import ClusterInspector, EndpointCache, K8sClient, KubernetesUpgrader
from ..model.config import UpgradeConfig, UpgradeOrder, load_config
from ..model.result import CheckReport, UpgradeResult
from ..talos import TalosClient, TalosNodeUpgrader
from ..upgrade import UpgradeManager
from ..utils.logger import configure_logging, get_logger
from ..utils.retry import RetryPolicy
from ..version.releases import ReleaseIndex

app = typer.Typer(
    name=APP_NAME,
    help="Upgrade Talos Linux and Kubernetes clusters node by node",
    add_completion=True,
)

console = Console()
logger = get_logger(__name__)


def build_manager(
    config: UpgradeConfig,
    talosconfig: Optional[Path] = None,
    kubeconfig: Optional[Path] = None,
    context: Optional[str] = None,
) -> UpgradeManager:
    """Wire the collaborators for one run."""
    timings = config.timings
    talos_client = TalosClient(str(talosconfig) if talosconfig else None)
    k8s_client = K8sClient(kubeconfig=str(kubeconfig) if kubeconfig else None, context=context)

    inspector = ClusterInspector(
        k8s_client,
        endpoint_cache=EndpointCache(talos_client),
        retry_policy=RetryPolicy(timings.retry_attempts, timings.retry_delay, (ClusterUnavailable,)),
        timeout=timings.snapshot_timeout,
    )
    release_index = ReleaseIndex(
        retry_policy=RetryPolicy(
            timings.retry_attempts, timings.retry_delay, (ReleaseIndexUnavailable, NoStableVersions)
        ),
        timeout=timings.release_fetch_timeout,
    )
    node_upgrader = TalosNodeUpgrader(
        talos_client,
        settle_delay=timings.reboot_settle_delay,
        probe_interval=timings.reboot_probe_interval,
    )
    return UpgradeManager(
        config,
        inspector=inspector,
        release_index=release_index,
        node_upgrader=node_upgrader,
        workload_upgrader=KubernetesUpgrader(talos_client),
        endpoint_cache=inspector.endpoint_cache,
    )


def print_upgrade_result(result: UpgradeResult) -> None:
    table = Table(title="Upgrade Result", show_header=True)
    table.add_column("Aspect", style="cyan", no_wrap=True)
    table.add_column("Details", style="white")

    table.add_row("Talos upgraded", "[green]yes[/green]" if result.talos_upgraded else "no")
    table.add_row("Kubernetes upgraded", "[green]yes[/green]" if result.k8s_upgraded else "no")
    table.add_row("Nodes upgraded", ", ".join(result.nodes_upgraded) or "-")
    table.add_row("Failed nodes", f"[red]{', '.join(result.failed_nodes)}[/red]" if result.failed_nodes else "-")
    for layer, reason in result.skipped_layers.items():
        table.add_row(f"Skipped {layer}", f"[yellow]{reason}[/yellow]")
    table.add_row("Duration", f"{result.duration.total_seconds():.0f}s")
    table.add_row("Success rate", f"{result.success_rate:.0%}")
    console.print(table)

    if result.errors:
        console.print("\n[bold red]Errors:[/bold red]")
        for error in result.errors:
            console.print(f"  • {error}")
    if result.rollback_required:
        console.print("[yellow]Rollback may be required due to failed nodes[/yellow]")


def print_check_report(report: CheckReport) -> None:
    table = Table(title="Upgrade Check", show_header=True)
    table.add_column("Layer", style="cyan", no_wrap=True)
    table.add_column("Current", style="white")
    table.add_column("Target", style="white")
    table.add_column("Available", style="white")
    table.add_column("Needs upgrade", style="white")

    for check in (report.talos, report.kubernetes):
        available = "[green]yes[/green]" if check.version_available else "[yellow]not yet released[/yellow]"
        needed = "[yellow]yes[/yellow]" if check.needs_upgrade else "no"
        table.add_row(check.layer.display_name, check.current_version, check.target_version, available, needed)
    console.print(table)

    if report.talos.nodes_to_upgrade:
        console.print(f"Nodes needing Talos upgrade: [cyan]{', '.join(report.talos.nodes_to_upgrade)}[/cyan]")
    if report.not_ready_nodes:
        console.print(f"[yellow]Nodes not ready:[/yellow] {', '.join(report.not_ready_nodes)}")
    for error in report.errors:
        console.print(f"[red]Error:[/red] {error}")
    console.print(report.summary())


async def _store_history(coro_factory) -> None:
    service = RunHistoryService()
    try:
        await coro_factory(service)
    except Exception as e:
        logger.warning(f"Failed to store run history: {e}")
    finally:
        await service.close()


async def _run(manager: UpgradeManager, config: UpgradeConfig, check_only: bool, store_history: bool) -> int:
    started_at = datetime.now()
    try:
        if check_only:
            logger.info("Running in check-only mode")
            report = await manager.check_only()
            print_check_report(report)
            if store_history:
                await _store_history(lambda service: service.record_check(config, report, started_at))
            return 1 if report.has_errors else 0

        logger.info("Running upgrade process")
        result = await manager.perform_upgrade()
    finally:
        await manager.release_index.close()

    print_upgrade_result(result)
    if store_history:
        await _store_history(lambda service: service.record_upgrade(config, result, started_at))

    if result.has_errors:
        return 1
    if not result.any_upgraded:
        console.print("No upgrades were needed - cluster is already up to date")
    return 0


@app.command()
def upgrade(
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to configuration file (default: search for water.yaml)"
    ),
    talosconfig: Optional[Path] = typer.Option(
        None, "--talosconfig", help="Path to Talos client configuration file (default: ~/.talos/config)"
    ),
    kubeconfig: Optional[Path] = typer.Option(
        None, "--kubeconfig", help="Path to kubeconfig file (default: ~/.kube/config or KUBECONFIG)"
    ),
    context: Optional[str] = typer.Option(None, "--context", help="Kubernetes context to use"),
    check_only: bool = typer.Option(False, "--check-only", help="Only check versions without performing upgrades"),
    talos_upgrade_order: Optional[UpgradeOrder] = typer.Option(
        None, "--talos-upgrade-order", help="Override Talos upgrade order"
    ),
    k8s_upgrade_order: Optional[UpgradeOrder] = typer.Option(
        None, "--k8s-upgrade-order", help="Override Kubernetes upgrade order"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Enable quiet mode (errors only)"),
    store_history: bool = typer.Option(
        True, "--store-history/--no-store-history", help="Record the run in the history database"
    ),
):
    """Check versions and upgrade Talos and Kubernetes where needed."""
    configure_logging(verbose, quiet)
    logger.info(f"Starting {APP_NAME} {__version__} - Talos Linux and Kubernetes upgrade tool")

    try:
        config = load_config(config_path).with_orders(talos_upgrade_order, k8s_upgrade_order)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)

    try:
        manager = build_manager(config, talosconfig, kubeconfig, context)
        exit_code = asyncio.run(_run(manager, config, check_only, store_history))
    except (WaterError, RuntimeError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if exit_code == 0:
        logger.info("Upgrade run finished successfully")
    raise typer.Exit(exit_code)


@app.command()
def history(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of runs to show"),
    database_url: Optional[str] = typer.Option(None, "--database-url", help="History database URL"),
):
    """Show recorded upgrade and check runs."""

    async def _list():
        service = RunHistoryService(database_url)
        try:
            return service.connection.get_database_info(), await service.list_runs(limit)
        finally:
            await service.close()

    try:
        info, runs = asyncio.run(_list())
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    console.print(f"History database: {info['url']} ({info['engine']})")

    if not runs:
        console.print("[yellow]No run history found[/yellow]")
        return

    table = Table(title="Run History", show_header=True)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Started", style="green")
    table.add_column("Mode", style="blue")
    table.add_column("Talos", style="white")
    table.add_column("Kubernetes", style="white")
    table.add_column("Errors", justify="right", style="yellow")
    table.add_column("Summary", style="white")

    for run in runs:
        table.add_row(
            str(run.id),
            run.started_at.strftime("%Y-%m-%d %H:%M:%S"),
            run.mode,
            run.talos_target or "-",
            run.k8s_target or "-",
            str(run.error_count),
            run.summary or "",
        )
    console.print(table)


@app.command()
def version():
    """Show version information."""
    console.print(f"{APP_NAME} version {__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
