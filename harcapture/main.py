import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from harcapture.core.config import load_config
from harcapture.core.logger_config import setup_logger
from harcapture.core.scope_filter import ScopeFilter
from harcapture.core.session_manager import SessionManager
from harcapture.models.models import CaptureResult
from harcapture.pipeline.capture_task import CaptureTask

logger = logging.getLogger(__name__)

console = Console()

def generate_summary(result: CaptureResult) -> Panel:
    """Renders the outcome of a capture as a table."""
    table = Table(
        title="Capture Summary",
        caption=result.target_url,
        expand=True,
        row_styles=["none", "dim"],
    )
    table.add_column("Metric", justify="left")
    table.add_column("Value", justify="right")

    table.add_row("Events", str(result.event_count))
    table.add_row("Bodies added", str(result.enriched_count))
    table.add_row("Bodies failed", str(result.failed_count))
    table.add_row("Responses ignored", str(result.ignored_count))
    table.add_row("Archive", result.archive_path)

    return Panel(
        table,
        title="HAR Capture",
        border_style="bold blue",
        padding=(1, 2),
    )

app = typer.Typer(add_completion=False)

@app.command()
def capture(
    url: Optional[str] = typer.Argument(None, help="URL of the page to capture."),
    scope: Optional[str] = typer.Argument(None, help="Comma separated substrings; only matching responses get their bodies stored."),
    config_path: Path = typer.Option(Path("config.toml"), "--config", "-c", help="Path to the TOML config file."),
    output_dir: Optional[Path] = typer.Option(None, "--output-dir", "-o", help="Directory the .har file is written to."),
    headful: bool = typer.Option(False, "--headful", help="Show the browser window."),
    fetch_timeout: Optional[float] = typer.Option(None, "--fetch-timeout", help="Seconds to wait for each response body (default: no limit)."),
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging."),
):
    """Load a page in a headless browser and save its network activity as a HAR file."""
    if not url:
        console.print("missing url argument")
        raise typer.Exit(code=1)

    config = load_config(config_path)
    if output_dir is not None:
        config.output_dir = output_dir
    if headful:
        config.headless = False
    if fetch_timeout:
        config.fetch_timeout = fetch_timeout

    setup_logger(debug or config.debug)

    scope_filter = ScopeFilter.parse(scope)
    if scope_filter.restricted:
        console.print(f"SCOPE ENABLED: Only download responses of scoped (sub)domains - {list(scope_filter.patterns)}", markup=False, soft_wrap=True)

    async def _run() -> CaptureResult:
        async with SessionManager(headless=config.headless) as sm:
            capture_task = CaptureTask(sm, config, scope_filter)
            return await capture_task.run(url)

    console.print(f"[bold green]Capturing {url}...[/bold green]")
    result = asyncio.run(_run())
    console.print(generate_summary(result))
    console.print(f"[bold green]Saved {result.archive_path}[/bold green]")


if __name__ == "__main__":
    app()
