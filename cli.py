"""CLI entry point for gemini-edge-proxy."""

import sys
from datetime import datetime

from rich.console import Console

from app import create_app
from core.config import CONFIG_FILE, load_config
from core.exceptions import ConfigurationError
from ui.dashboard import Dashboard
from ui.log_utils import CLI_LOG_FILE, clear_logs, write_cli_log

console = Console()


def main():
    """Main CLI entry point."""
    config = load_config()
    headless = False

    # Handle CLI arguments
    if len(sys.argv) > 1:
        arg = sys.argv[1]

        if arg == "--config":
            console.print(f"[bold]Config:[/bold] {CONFIG_FILE}")
            console.print(f"[bold]Log:[/bold] {CLI_LOG_FILE}")
            return

        if arg in ("--help", "-h"):
            _print_help()
            return

        if arg == "--headless":
            headless = True
        else:
            console.print(f"[red][ERROR][/red] Unknown option: {arg}")
            _print_help()
            sys.exit(2)

    # Clear previous logs and start dashboard
    clear_logs()
    dashboard = Dashboard(config)

    import uvicorn

    try:
        app = create_app(config, dashboard)
    except ConfigurationError as e:
        console.print(f"[red][ERROR][/red] {e}")
        console.print(f"[dim]Edit {CONFIG_FILE} and fix headers.allow_patterns[/dim]")
        sys.exit(1)

    uvicorn_config = uvicorn.Config(
        app,
        host=config.proxy.host,
        port=config.proxy.port,
        log_level="warning",
    )
    server = uvicorn.Server(uvicorn_config)

    if headless:
        console.print(
            f"[bold cyan]Gemini Edge Proxy[/bold cyan] listening on "
            f"http://{config.proxy.host}:{config.proxy.port} -> {config.upstream.base_url}"
        )
    else:
        dashboard.start()
    start_time = datetime.now()
    write_cli_log(
        "STARTUP",
        "Proxy started",
        port=config.proxy.port,
        upstream=config.upstream.base_url,
        policy=config.headers.policy,
    )
    try:
        server.run()
    finally:
        duration = datetime.now() - start_time
        write_cli_log("SHUTDOWN", "Proxy stopped", duration=str(duration))
        dashboard.stop()


def _print_help():
    """Print help message."""
    help_text = """
[bold cyan]Gemini Edge Proxy[/bold cyan]

Forwards every request to the Gemini API with permissive CORS headers.

[bold]Usage:[/bold]
    gemini-edge-proxy              Start with live dashboard
    gemini-edge-proxy --headless   Start without dashboard (file log only)
    gemini-edge-proxy --config     Show config and log locations
    gemini-edge-proxy --help       Show this help

[bold]Header policy:[/bold]
    Set headers.policy to "allow" (relay only Gemini headers) or "deny"
    (relay all but identifying headers, then mask the caller) in the config file.
"""
    console.print(help_text)


if __name__ == "__main__":
    main()
