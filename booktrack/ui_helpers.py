import os
import json
from typing import Any, Dict, Optional

from rich.console import Console
from rich.table import Table
from rich.panel import Panel

from booktrack.state import Failed, Idle, QueryParameters, Results, Searching, SearchState, state_to_dict

# Environment variable controlling CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "BOOKTRACK_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def print_state_result(state: SearchState, params: Optional[QueryParameters] = None) -> None:
    """Print a search state in the current output mode.
    - plain: one line per book as 'ISBN - Title by Author', or a status line
    - json: the serialized state
    - rich: a table of results, captioned with the sort order when `params` is given, or a status panel
    """
    mode = get_output_mode()

    if mode == "json":
        print(json.dumps(state_to_dict(state), ensure_ascii=False))
        return

    if isinstance(state, Results):
        if not state.items:
            print(f"No books found for '{state.query}'.")
            return
        if mode == "rich":
            caption = f"Sorted by {params.sort_by.display_name}" if params else None
            table = Table(
                title=f"📚 Results for '{state.query}'", caption=caption, show_lines=True, header_style="bold cyan"
            )
            table.add_column("ISBN", style="magenta", no_wrap=True)
            table.add_column("Title", style="white")
            table.add_column("Author", style="white")
            table.add_column("Published", style="dim")
            for b in state.items:
                table.add_row(b.isbn or "-", b.title, b.author, b.published_date or "-")
            _console.print(table)
        else:
            print(f"Found {state.count} books for '{state.query}':")
            for b in state.items:
                print(f"{b.isbn or '-'} - {b.title} by {b.author}")
    elif isinstance(state, Failed):
        if mode == "rich":
            _console.print(Panel.fit(state.message, title="❌ Search failed", border_style="red"))
        else:
            print(f"Error: {state.message}")
    elif isinstance(state, Searching):
        print(f"Searching for '{state.query}'...")
    elif isinstance(state, Idle):
        print("Nothing to search.")


def print_settings_result(values: Dict[str, Any]) -> None:
    mode = get_output_mode()

    if mode == "json":
        print(json.dumps(values, ensure_ascii=False, default=str))
    elif mode == "rich":
        table = Table(title="⚙️  Settings", header_style="bold cyan")
        table.add_column("Key", style="yellow")
        table.add_column("Value", style="white")
        for key, value in values.items():
            table.add_row(key, str(value))
        _console.print(table)
    else:
        for key, value in values.items():
            print(f"{key}: {value}")
