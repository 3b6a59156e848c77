"""
CLI entry point for the PolyLoans Relayer.
"""

import asyncio
from pathlib import Path
from typing import Optional

import typer
import structlog

from .config import RelayerConfig
from .errors import RelayError
from .relayer import PolyLoansRelayer

# Configure structlog
structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ]
)

app = typer.Typer(
    name="polyloans-relayer",
    help="PolyLoans proxy wallet relayer",
    add_completion=False,
)

ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to .env configuration file",
)


@app.command()
def enroll(
    market: str = typer.Option(..., "--market", "-m", help="Market contract address"),
    wallet: str = typer.Option(..., "--wallet", "-w", help="Proxy wallet to enroll"),
    config_path: Optional[Path] = ConfigOption,
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Only report which grants are missing",
    ),
) -> None:
    """
    Authorize a market to move a wallet's collateral and settlement asset.
    """

    async def _enroll() -> None:
        relayer = PolyLoansRelayer(RelayerConfig.from_env(config_path))
        try:
            enrollment = relayer.enrollment()
            typer.echo(f"Authorizing market: {market}")
            typer.echo(f"Wallet: {wallet}")

            if dry_run:
                pending = await enrollment.pending_calls(wallet, market)
                if not pending:
                    typer.echo("Nothing to do: market already authorized.")
                for call in pending:
                    typer.echo(f"  Missing: {call.description} (target {call.target})")
                return

            result = await enrollment.enroll(wallet, market)
            if result.transfer_already_granted:
                typer.echo("  1/2 Collateral transfer rights: already granted")
            elif result.transfer_grant:
                typer.echo(f"  1/2 Collateral transfer rights: {result.transfer_grant.tx_hash}")
            if result.spend_already_granted:
                typer.echo("  2/2 Settlement allowance: already granted")
            elif result.spend_grant:
                typer.echo(f"  2/2 Settlement allowance: {result.spend_grant.tx_hash}")
            typer.echo("Market is authorized.")
        except (RelayError, ValueError) as e:
            typer.echo(f"Enrollment failed: {e}", err=True)
            raise typer.Exit(1)
        finally:
            await relayer.close()

    asyncio.run(_enroll())


@app.command()
def nonce(
    user: str = typer.Argument(..., help="End-user address"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    Resolve a user's proxy wallet and print its current nonce.
    """

    async def _nonce() -> None:
        relayer = PolyLoansRelayer(RelayerConfig.from_env(config_path))
        try:
            result = await relayer.get_nonce(user)
            typer.echo(f"Proxy: {result.proxy}")
            typer.echo(f"Nonce: {result.nonce}")
        except RelayError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1)
        finally:
            await relayer.close()

    asyncio.run(_nonce())


@app.command()
def resolve(
    user: str = typer.Argument(..., help="End-user address"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    Print the proxy wallet for a user.
    """

    async def _resolve() -> None:
        relayer = PolyLoansRelayer(RelayerConfig.from_env(config_path))
        try:
            proxy = await relayer.resolver.resolve(user)
        finally:
            await relayer.close()

        if proxy is None:
            typer.echo(f"No proxy wallet found for {user}", err=True)
            raise typer.Exit(1)
        typer.echo(proxy)

    asyncio.run(_resolve())


@app.command()
def version() -> None:
    """Show the relayer version."""
    from polyloans_relayer import __version__
    typer.echo(f"polyloans-relayer v{__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
