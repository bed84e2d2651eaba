"""
batchpay CLI - Pay the same amount to many addresses in one transaction.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import typer
from loguru import logger
from pydantic import ValidationError

from batchpay.backends import BitcoinCoreBackend, BlockchainBackend, MempoolBackend
from batchpay.config import BackendType, BatchConfig, load_config, load_recipients
from batchpay.errors import BatchPayError, BroadcastError
from batchpay.models import RecipientOutput
from batchpay.sender import BatchSender, PreparedBatch
from batchpay.wallet.keys import load_key_material

app = typer.Typer(
    name="batchpay",
    help="Batch Bitcoin payments from a single-key wallet",
    add_completion=False,
)


def setup_logging(level: str = "INFO") -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def create_backend(config: BatchConfig) -> BlockchainBackend:
    if config.backend_type == BackendType.BITCOIN_CORE:
        return BitcoinCoreBackend(
            rpc_url=config.rpc_url,
            rpc_user=config.rpc_user,
            rpc_password=config.rpc_password.get_secret_value(),
        )
    return MempoolBackend(api_url=config.api_url, network=config.network)


def format_sats(value: int) -> str:
    return f"{value:,} sats ({value / 1e8:.8f} BTC)"


def format_preview(prepared: PreparedBatch) -> str:
    """Human readable summary of a prepared batch."""
    change = format_sats(prepared.change_value) if prepared.has_change else "none (below dust)"
    lines = [
        "",
        "=" * 80,
        "BATCH TRANSACTION PREVIEW",
        "=" * 80,
        f"From:          {prepared.funding_address}",
        f"Recipients:    {len(prepared.recipients)}",
        f"Per recipient: {format_sats(prepared.amount_sats)}",
        f"Total payout:  {format_sats(prepared.total_payout)}",
        f"Inputs:        {prepared.input_count} ({format_sats(prepared.total_input)})",
        f"Fee:           {format_sats(prepared.fee)} "
        f"@ {prepared.fee_rate} sat/vB ({prepared.final.vsize} vB)",
        f"Paid rate:     {prepared.effective_fee_rate:.2f} sat/vB",
        f"Change:        {change}",
        f"TXID:          {prepared.final.txid}",
        "=" * 80,
    ]
    return "\n".join(lines)


def _load_config(
    config_file: Path,
    network: str | None = None,
    scheme: str | None = None,
    fee_rate: float | None = None,
) -> BatchConfig:
    if not config_file.exists():
        logger.error(f"Config file not found: {config_file}")
        raise typer.Exit(1)
    try:
        return load_config(config_file).with_overrides(
            network=network, scheme=scheme, fee_rate=fee_rate
        )
    except ValidationError as e:
        logger.error(f"Invalid config {config_file}: {e}")
        raise typer.Exit(1)


@app.command()
def address(
    config_file: Path = typer.Option(Path("config.json"), "--config", "-c", help="Config file"),
    network: str | None = typer.Option(None, "--network", "-n", help="Bitcoin network"),
    scheme: str | None = typer.Option(None, "--scheme", "-s", help="p2tr | p2wpkh"),
    log_level: str = typer.Option("WARNING", "--log-level", "-l"),
) -> None:
    """Show the funding address derived from the configured key."""
    setup_logging(log_level)
    config = _load_config(config_file, network, scheme)

    try:
        keys = load_key_material(
            config.private_key.get_secret_value(), config.network, config.scheme
        )
    except BatchPayError as e:
        logger.error(str(e))
        raise typer.Exit(1)

    typer.echo(f"Network: {keys.network.value}")
    typer.echo(f"Scheme:  {keys.scheme.value}")
    typer.echo(f"Address: {keys.address}")
    typer.echo(f"Script:  {keys.script_pubkey.hex()}")


@app.command()
def send(
    config_file: Path = typer.Option(Path("config.json"), "--config", "-c", help="Config file"),
    recipients_file: Path = typer.Option(
        Path("addresses.txt"), "--recipients", "-r", help="One recipient address per line"
    ),
    network: str | None = typer.Option(None, "--network", "-n", help="Bitcoin network"),
    scheme: str | None = typer.Option(None, "--scheme", "-s", help="p2tr | p2wpkh"),
    fee_rate: float | None = typer.Option(
        None, "--fee-rate", help="Fee rate in sat/vB (skips the fee lookup)"
    ),
    deadline: float | None = typer.Option(
        None, "--deadline", help="Give up if preparation takes longer than this (seconds)"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Broadcast without asking"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Sign but do not broadcast"),
    log_level: str = typer.Option("INFO", "--log-level", "-l"),
) -> None:
    """Pay every recipient the configured amount in one transaction."""
    setup_logging(log_level)
    config = _load_config(config_file, network, scheme, fee_rate)

    if not recipients_file.exists():
        logger.error(f"Recipients file not found: {recipients_file}")
        raise typer.Exit(1)

    try:
        recipients = load_recipients(recipients_file, config.amount_sats, config.network)
    except BatchPayError as e:
        logger.error(f"{recipients_file}: {e}")
        raise typer.Exit(1)

    if not recipients:
        logger.error(f"No recipient addresses in {recipients_file}")
        raise typer.Exit(1)

    try:
        asyncio.run(_send(config, recipients, deadline=deadline, yes=yes, dry_run=dry_run))
    except BatchPayError as e:
        logger.error(str(e))
        raise typer.Exit(1)


async def _send(
    config: BatchConfig,
    recipients: list[RecipientOutput],
    deadline: float | None,
    yes: bool,
    dry_run: bool,
) -> None:
    """Send implementation."""
    backend = create_backend(config)
    sender: BatchSender | None = None

    try:
        sender = BatchSender(config, backend, recipients)
        prepared = await sender.prepare(deadline=deadline)

        typer.echo(format_preview(prepared))

        if dry_run:
            typer.echo(f"\nSigned transaction (not broadcast):\n{prepared.final.hex}")
            return

        if not yes and not typer.confirm("\nBroadcast this transaction?", default=False):
            typer.echo("Cancelled, nothing was broadcast.")
            return

        try:
            txid = await sender.broadcast(prepared)
        except BroadcastError:
            # The signed transaction stays valid and can be re-broadcast as is
            typer.echo(f"\nBroadcast failed for TXID: {prepared.final.txid}")
            typer.echo(f"Signed transaction:\n{prepared.final.hex}")
            raise
        typer.echo(f"\nBroadcast successful. TXID: {txid}")

    finally:
        if sender is not None:
            sender.close()
        await backend.close()


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
