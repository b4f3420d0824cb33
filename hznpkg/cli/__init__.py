"""hznpkg CLI — Typer-based command-line interface.

Provides the ``hznpkg`` command with subcommands for creating packages,
verifying published packages, and generating signing keys.

Build progress and errors go to stderr; the only stdout output of a
successful ``create`` is the result line.
"""
