"""CLI entrypoint: Typer app definition and command registration"""

import typer

from blockdoc.cli.commands import epub_cmd, list_cmd, show_cmd


app = typer.Typer(name="blockdoc", no_args_is_help=True, help="Block document packages: list, inspect, and export to EPUB")

app.command(name="list")(list_cmd)
app.command(name="show")(show_cmd)
app.command(name="epub")(epub_cmd)
