"""Real-time CLI dashboard for proxy monitoring."""

from datetime import datetime
from threading import Lock

from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from core.config import Config
from ui.log_utils import redact_url, write_cli_log

console = Console()


class RequestInfo:
    """Info about a single forwarded request."""

    def __init__(
        self,
        method: str,
        path: str,
        status: int,
        attempts: int,
        timestamp: datetime,
    ):
        self.method = method
        self.path = path[:60] + "..." if len(path) > 60 else path
        self.status = status
        self.attempts = attempts
        self.timestamp = timestamp


class Dashboard:
    """Real-time dashboard showing forwarded requests, retries and failures."""

    def __init__(self, config: Config):
        self.config = config
        self._lock = Lock()
        self._requests: list[RequestInfo] = []
        self._max_requests = 10
        self._counts = {"forwarded": 0, "retries": 0, "failed": 0}
        self._errors: list[str] = []
        self._live: Live | None = None

    def start(self) -> "Dashboard":
        """Start the live dashboard."""
        self._live = Live(
            self._build_layout(),
            console=console,
            refresh_per_second=4,
            screen=False,
        )
        self._live.start()
        return self

    def stop(self) -> None:
        """Stop the live dashboard."""
        if self._live:
            self._live.stop()

    def log_request(self, method: str, path: str, target_url: str) -> None:
        """Log a request about to be sent upstream."""
        write_cli_log("FORWARD", f"{method} {path}", target=redact_url(target_url))

    def log_retry(self, attempt: int, delay_ms: int, message: str) -> None:
        """Log a failed attempt that will be retried."""
        with self._lock:
            self._counts["retries"] += 1
            self._refresh()
            write_cli_log("RETRY", message[:200], attempt=attempt, delay_ms=delay_ms)

    def log_response(
        self,
        method: str,
        path: str,
        status: int,
        *,
        attempts: int = 1,
    ) -> None:
        """Log an upstream response being relayed to the caller."""
        with self._lock:
            self._counts["forwarded"] += 1
            info = RequestInfo(
                method=method,
                path=path,
                status=status,
                attempts=attempts,
                timestamp=datetime.now(),
            )
            self._requests.insert(0, info)
            self._requests = self._requests[: self._max_requests]
            self._refresh()
            write_cli_log("RESPONSE", f"{method} {path}", status=status, attempts=attempts)

    def log_error(self, status: int, message: str) -> None:
        """Log an error."""
        with self._lock:
            self._counts["failed"] += 1
            truncated = message[:50] + "..." if len(message) > 50 else message
            self._errors.insert(0, f"{status}: {truncated}")
            self._errors = self._errors[:3]
            self._refresh()
            write_cli_log("ERROR", message[:200], status=status)

    def _refresh(self) -> None:
        """Refresh the display."""
        if self._live:
            self._live.update(self._build_layout())

    def _build_layout(self) -> Layout:
        """Build the dashboard layout."""
        layout = Layout()

        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="body"),
            Layout(name="footer", size=5),
        )

        layout["header"].update(self._build_header())
        layout["body"].update(self._build_requests_panel())
        layout["footer"].update(self._build_footer())

        return layout

    def _build_header(self) -> Panel:
        """Build header with stats."""
        stats = Text()
        stats.append("Gemini Edge Proxy", style="bold cyan")
        stats.append("  |  ")
        stats.append(f"Forwarded: {self._counts['forwarded']}", style="green")
        stats.append("  |  ")
        stats.append(f"Retries: {self._counts['retries']}", style="yellow")
        stats.append("  |  ")
        stats.append(f"Failed: {self._counts['failed']}", style="red")
        stats.append("  |  ")
        stats.append(f"Port: {self.config.proxy.port}", style="dim")

        return Panel(stats, style="cyan")

    def _build_requests_panel(self) -> Panel:
        """Build recent requests panel."""
        if self._requests:
            table = Table(show_header=True, header_style="bold", expand=True, box=None)
            table.add_column("Time", style="dim", width=8)
            table.add_column("Method", width=7)
            table.add_column("Path", ratio=3)
            table.add_column("Status", width=6)
            table.add_column("Attempts", width=8)

            for req in self._requests:
                status_style = "green" if req.status < 400 else "red"
                table.add_row(
                    req.timestamp.strftime("%H:%M:%S"),
                    req.method,
                    req.path,
                    f"[{status_style}]{req.status}[/{status_style}]",
                    str(req.attempts),
                )

            content = table
        else:
            content = Text("Waiting for requests...", style="dim")

        return Panel(
            content,
            title=f"[blue]Upstream: {self.config.upstream.base_url}[/blue]",
            border_style="blue",
        )

    def _build_footer(self) -> Panel:
        """Build footer with errors and help."""
        if self._errors:
            error_text = Text()
            for err in self._errors:
                error_text.append("! ", style="red bold")
                error_text.append(err + "\n", style="red")
            content = error_text
        else:
            content = Text(
                f"Point Gemini clients at http://{self.config.proxy.host}:{self.config.proxy.port}",
                style="dim",
            )

        return Panel(content, title="[dim]Status[/dim]", border_style="dim")
