"""Main Typer application — imports and registers all CLI commands.

Entry point: ``hznpkg`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import typer

from hznpkg import __version__
from hznpkg.cli.commands.create import create_cmd
from hznpkg.cli.commands.keygen import keygen_cmd
from hznpkg.cli.commands.verify import verify_cmd

app = typer.Typer(
    name="hznpkg",
    help="Create, sign and verify Horizon packages built from container images.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="create", help="Create a new package from container images.")(create_cmd)
app.command(name="c", hidden=True)(create_cmd)
app.command(name="verify", help="Verify a published package against a public key.")(verify_cmd)
app.command(name="keygen", help="Generate an Ed25519 signing key pair.")(keygen_cmd)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"hznpkg {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    debug: bool = typer.Option(
        False, "--debug", envvar="HZNPKG_DEBUG", help="Enable debug output on stderr."
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """hznpkg: signed, content-addressed packages from container images."""
    ctx.obj = {"debug": debug}


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
