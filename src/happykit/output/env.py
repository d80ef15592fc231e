"""Environment dump printed by the main process in verbose mode.

Two sections, each sorted by key: SESSION (runtime ``app.*`` values) and
SETTINGS (the profile, with the type and source of every value). Values
under secret keys are masked.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from rich.markup import escape
from rich.table import Table

from happykit.output.console import create_console, get_output

if TYPE_CHECKING:
    from happykit.session import Session

MASK = "********"


def _table(title: str) -> Table:
    table = Table(title=title, title_style="happy.section", title_justify="left", box=None)
    table.add_column("key", style="happy.key", no_wrap=True)
    table.add_column("type", style="happy.type")
    table.add_column("value", overflow="fold")
    return table


def render_env(session: Session, *, no_color: bool = False, width: int | None = None) -> str:
    """Render the SESSION and SETTINGS tables as text."""
    console = create_console(no_color=no_color, width=width)

    values: dict[str, Any] = session.values()
    session_table = _table("SESSION")
    for key in sorted(values):
        value = values[key]
        session_table.add_row(escape(key), f"({type(value).__name__})", escape(str(value)))

    settings_table = _table("SETTINGS")
    settings_table.add_column("source", style="happy.source")
    for setting in session.profile.all():
        if session.settings.is_secret(setting.key) and setting.is_set():
            shown = f"[happy.secret]{MASK}[/]"
        else:
            shown = escape(str(setting.value))
        settings_table.add_row(setting.key, f"({setting.type_name})", shown, setting.source)

    console.print(session_table)
    console.print()
    console.print(settings_table)
    return get_output(console)
