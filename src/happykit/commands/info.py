"""info — print application identity."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import click
from rich.markup import escape

from happykit.command import Command
from happykit.output.console import create_console, get_output

if TYPE_CHECKING:
    from happykit.session import Session


def app_info(session: Session) -> dict[str, Any]:
    """Collect the identity fields of the running application."""
    s = session.settings
    return {
        "name": s.name,
        "slug": s.slug,
        "version": s.version,
        "description": s.description,
        "copyright_by": s.copyright_by,
        "copyright_since": s.copyright_since,
        "license": s.license,
    }


def render_info(data: dict[str, Any], *, no_color: bool = False) -> str:
    console = create_console(no_color=no_color)
    console.print(f"[happy.title]{escape(data['name'])}[/] ({data['slug']}) {escape(data['version'])}")
    if data["description"]:
        console.print(escape(data["description"]))
    if data["copyright_by"]:
        since = f"{data['copyright_since']} " if data["copyright_since"] else ""
        console.print(escape(f"Copyright {since}{data['copyright_by']}"))
    if data["license"]:
        console.print(escape(f"License: {data['license']}"))
    return get_output(console)


def info() -> Command:
    """Build the ``info`` command."""
    cmd = Command("info", description="Print application info.")

    @cmd.do
    def _do(session: Session, args: list[str]) -> None:
        data = app_info(session)
        if session.settings.json_output:
            click.echo(json.dumps(data, indent=2))
        else:
            click.echo(render_info(data), nl=False)

    return cmd
