"""``hznpkg keygen`` — generate an Ed25519 key pair for signing packages."""

from __future__ import annotations

import os
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel

from hznpkg.bridge.crypto_bridge import generate_keypair, key_fingerprint, load_verify_key

console = Console()


def keygen_cmd(
    out_dir: Path = typer.Option(
        Path("."), "--out-dir", "-o", help="Directory the key files are written to."
    ),
    name: str = typer.Option("hznpkg", "--name", "-n", help="Base name of the key files."),
    force: bool = typer.Option(False, "--force", help="Overwrite existing key files."),
) -> None:
    """Write <name>.pem (private, mode 0600) and <name>.pub.pem (public)."""
    private_path = out_dir / f"{name}.pem"
    public_path = out_dir / f"{name}.pub.pem"

    existing = [p for p in (private_path, public_path) if p.exists()]
    if existing and not force:
        console.print(
            f"[bold red]Refusing to overwrite:[/bold red] {', '.join(map(str, existing))}"
        )
        raise typer.Exit(code=2)

    private_pem, public_pem = generate_keypair()
    out_dir.mkdir(parents=True, exist_ok=True)
    fd = os.open(private_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as fh:
        fh.write(private_pem)
    os.chmod(private_path, 0o600)
    public_path.write_bytes(public_pem)

    fingerprint = key_fingerprint(load_verify_key(public_path))
    console.print(
        Panel(
            "\n".join([
                "[bold green]Key pair generated.[/bold green]",
                "",
                f"[bold]Private key:[/bold] {private_path}",
                f"[bold]Public key:[/bold]  {public_path}",
                f"[bold]Fingerprint:[/bold] {fingerprint}",
            ]),
            title="[bold]hznpkg[/bold]",
            border_style="green",
            padding=(1, 2),
        )
    )
