import asyncio
import logging
from dataclasses import asdict
from typing import Optional

import typer

from booktrack.config import settings
from booktrack.controller import SearchController
from booktrack.scanner import BarcodeLookup, ScanEventBridge
from booktrack.services.http_client import cleanup_http_client
from booktrack.services.search_service import BookSearchService
from booktrack.state import Failed, QueryParameters, SearchState, SortOption
from booktrack.ui_helpers import print_settings_result, print_state_result, set_output_mode

logger = logging.getLogger(__name__)

app = typer.Typer(help="BooksTrack search CLI")


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Global CLI options (output mode, logging)."""
    if output:
        set_output_mode(output)
    level = logging.DEBUG if verbose or settings.debug else getattr(logging, settings.log_level.upper(), logging.WARNING)
    logging.basicConfig(level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")


def _finish(state: SearchState, params: Optional[QueryParameters] = None) -> None:
    print_state_result(state, params)
    if isinstance(state, Failed):
        raise typer.Exit(code=1)


async def _run_search(query: str, params: QueryParameters) -> SearchState:
    controller = SearchController(BookSearchService(), params)
    try:
        controller.submit(query)
        await controller.wait_until_settled()
        return controller.state
    finally:
        await cleanup_http_client()


async def _run_scan(code: str) -> Optional[SearchState]:
    service = BookSearchService()
    controller = SearchController(service)
    bridge = ScanEventBridge(controller.on_scan_event)
    lookup = BarcodeLookup(service, bridge)
    bridge.start()
    try:
        event = await lookup.handle_barcode(code)
        if event is None:
            return None
        await bridge.join()
        await controller.wait_until_settled()
        return controller.state
    finally:
        await bridge.stop()
        await cleanup_http_client()


@app.command("search")
def cli_search(
    query: str = typer.Argument(..., help="Title, author or ISBN"),
    sort: SortOption = typer.Option(SortOption.RELEVANCE, "--sort", "-s", help="Result ordering"),
    all_languages: bool = typer.Option(False, "--all-languages", "-a", help="Include translations"),
):
    """Search the book catalogue."""
    if not query.strip():
        print("Nothing to search.")
        return
    params = QueryParameters(sort_by=sort, include_translations=all_languages)
    _finish(asyncio.run(_run_search(query, params)), params)


@app.command("scan")
def cli_scan(barcode: str = typer.Argument(..., help="Decoded barcode value")):
    """Look up a scanned ISBN barcode."""
    if not settings.enable_barcode_scanner:
        print("Barcode scanning is disabled.")
        raise typer.Exit(code=1)
    state = asyncio.run(_run_scan(barcode))
    if state is None:
        print(f"Not an ISBN barcode: {barcode}")
        raise typer.Exit(code=1)
    _finish(state)


@app.command("config")
def cli_config():
    """Show the effective settings."""
    values = asdict(settings)
    if values.get("api_key"):
        values["api_key"] = values["api_key"][:4] + "..."
    print_settings_result(values)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
