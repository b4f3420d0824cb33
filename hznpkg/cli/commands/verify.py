"""``hznpkg verify MANIFEST`` — check a published package's signatures and parts."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from hznpkg.bridge.crypto_bridge import load_verify_key
from hznpkg.cli._logging import EXIT_VERIFICATION_FAILED, exit_code_for
from hznpkg.core.verifier import PackageVerifier
from hznpkg.errors import PkgBuildError
from hznpkg.models.verification import VerificationReport

console = Console()


def verify_cmd(
    manifest: Path = typer.Argument(..., help="Path to the package manifest (<id>.json)."),
    public_key: Path = typer.Option(
        ..., "--public-key", "-p", help="PEM-encoded Ed25519 public key."
    ),
    signature: Optional[Path] = typer.Option(
        None, "--signature", "-s", help="Detached manifest signature. Defaults to <manifest>.sig."
    ),
    package_dir: Optional[Path] = typer.Option(
        None, "--package-dir", help="Directory holding the parts. Defaults to <manifest dir>/<id>."
    ),
) -> None:
    """Verify the manifest signature and every part of a package."""
    try:
        verifier = PackageVerifier(load_verify_key(public_key))
        report = verifier.verify(manifest, signature_file=signature, package_dir=package_dir)
    except PkgBuildError as exc:
        console.print(f"[bold red]Verification error:[/bold red] {exc}")
        raise typer.Exit(code=exit_code_for(exc.is_user_error))

    _print_report(report)
    if not report.ok:
        raise typer.Exit(code=EXIT_VERIFICATION_FAILED)


def _print_report(report: VerificationReport) -> None:
    sig = "[green]valid[/green]" if report.manifest_signature_valid else "[red]INVALID[/red]"
    console.print(f"[bold]Package:[/bold] {report.package_id}")
    console.print(f"[bold]Manifest signature:[/bold] {sig}")

    table = Table(title="Parts")
    table.add_column("Image", style="cyan")
    table.add_column("Digest")
    table.add_column("Found", justify="center")
    table.add_column("Digest OK", justify="center")
    table.add_column("Signature", justify="center")
    table.add_column("Detail", style="dim")

    def mark(flag: bool) -> str:
        return "[green]Yes[/green]" if flag else "[red]No[/red]"

    for part in report.parts:
        table.add_row(
            part.description,
            part.part_id[:16],
            mark(part.found),
            mark(part.digest_matches),
            mark(part.signature_valid),
            part.detail,
        )
    console.print(table)

    if report.ok:
        console.print("[bold green]Package verified.[/bold green]")
    else:
        console.print("[bold red]Package failed verification.[/bold red]")
