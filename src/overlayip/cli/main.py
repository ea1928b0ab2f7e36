"""
overlayip CLI entry point.

Usage:
    overlayip [OPTIONS] COMMAND [ARGS]...

Commands:
    controller  Run the control-plane controller (one replica per cluster)
    agent       Run the node agent (one per node)
    version     Show version information

Every option falls back to the environment variable of the matching
config field (see ControllerConfig / AgentConfig).
"""

import asyncio
from typing import Annotated

import typer

from overlayip.cli.output import console, print_error
from overlayip.exceptions import ConfigurationError
from overlayip.models.enums import LogLevel, NetworkBackendType
from overlayip.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)

app = typer.Typer(
    name="overlayip",
    help="Per-node overlay IPs and static routes for Kubernetes nodes",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _run(coro) -> None:
    try:
        asyncio.run(coro)
    except ConfigurationError as e:
        print_error(str(e))
        raise typer.Exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


@app.command("controller")
def controller(
    ipam_config: Annotated[
        str | None,
        typer.Option("--ipam-config", help="phpIPAM config file (IPAM_CONFIG_FILE)"),
    ] = None,
    kubeconfig: Annotated[
        str | None,
        typer.Option("--kubeconfig", help="kubeconfig path (KUBECONFIG)"),
    ] = None,
    workers: Annotated[
        int | None,
        typer.Option("--workers", "-w", help="Workers per reconciler (WORKERS)"),
    ] = None,
    log_level: Annotated[
        LogLevel | None,
        typer.Option("--log-level", "-l", help="Log verbosity (LOG_LEVEL)"),
    ] = None,
):
    """Run the NodeOverlayIp controller and Node provisioner."""
    from overlayip.controller.app import run_controller
    from overlayip.controller.config import ControllerConfig

    try:
        config = ControllerConfig.from_env()
    except ConfigurationError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if ipam_config:
        config.IPAM_CONFIG_FILE = ipam_config
    if kubeconfig:
        config.KUBECONFIG = kubeconfig
    if workers is not None:
        config.WORKERS = workers
    if log_level:
        config.LOG_LEVEL = log_level

    configure_logging(config.LOG_LEVEL)
    _run(run_controller(config))


@app.command("agent")
def agent(
    hostname: Annotated[
        str | None,
        typer.Option("--hostname", help="Name of this node (NODE_HOSTNAME)"),
    ] = None,
    interface: Annotated[
        str | None,
        typer.Option("--interface", "-i", help="Parent device for the overlay (INTERFACE)"),
    ] = None,
    interface_label: Annotated[
        str | None,
        typer.Option("--interface-label", help="Overlay device name (INTERFACE_LABEL)"),
    ] = None,
    backend: Annotated[
        NetworkBackendType | None,
        typer.Option("--backend", help="Host network backend (NETWORK_BACKEND)"),
    ] = None,
    kubeconfig: Annotated[
        str | None,
        typer.Option("--kubeconfig", help="kubeconfig path (KUBECONFIG)"),
    ] = None,
    log_level: Annotated[
        LogLevel | None,
        typer.Option("--log-level", "-l", help="Log verbosity (LOG_LEVEL)"),
    ] = None,
):
    """Run the node agent: overlay device, overlay address and static routes."""
    from overlayip.agent.app import run_agent
    from overlayip.agent.config import AgentConfig

    try:
        config = AgentConfig.from_env()
    except ConfigurationError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if hostname:
        config.NODE_HOSTNAME = hostname
    if interface:
        config.INTERFACE = interface
    if interface_label:
        config.INTERFACE_LABEL = interface_label
    if backend:
        config.NETWORK_BACKEND = backend
    if kubeconfig:
        config.KUBECONFIG = kubeconfig
    if log_level:
        config.LOG_LEVEL = log_level

    configure_logging(config.LOG_LEVEL)
    _run(run_agent(config))


@app.command("version")
def version():
    """Show version information."""
    from overlayip import __version__

    console.print(f"overlayip v{__version__}")


if __name__ == "__main__":
    app()
