"""
Bitcoin wallet engine CLI package.

Commands are organized into submodules and registered via ``@app.command()``
decorators that reference the ``app`` Typer instance defined here.
"""

from __future__ import annotations

import typer

app = typer.Typer(
    name="btc-wallet",
    help="Bitcoin wallet key derivation and transaction tools",
    add_completion=False,
)


def main() -> None:
    """Entry point for the ``btc-wallet`` console script."""
    app()


# ---------------------------------------------------------------------------
# Import submodules to register their ``@app.command()`` decorated functions.
# These imports MUST come after ``app`` is defined above.
# ---------------------------------------------------------------------------
from btcwallet.cli import keys, tx  # noqa: E402, F401

if __name__ == "__main__":
    main()
