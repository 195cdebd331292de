"""
Transaction and address inspection commands: decode-tx, address-info.
"""

from __future__ import annotations

import json
from dataclasses import asdict
from typing import Annotated

import typer
from loguru import logger

from btccore.bitcoin import address_to_scriptpubkey, detect_script_type, format_amount
from btccore.cli_common import resolve_network, setup_cli
from btccore.errors import InvalidAddressError, TransactionParseError
from btccore.transaction import decode_transaction
from btcwallet.cli import app


@app.command("decode-tx")
def decode_tx(
    raw_hex: Annotated[str, typer.Argument(help="Raw transaction hex")],
    network: Annotated[str | None, typer.Option("--network", "-n", help="Bitcoin network")] = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print JSON")] = False,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", "-l", help="Log level"),
    ] = None,
) -> None:
    """Decode a raw transaction and show its inputs and outputs."""
    settings = setup_cli(log_level)

    try:
        decoded = decode_transaction(raw_hex, resolve_network(settings, network))
    except (TransactionParseError, ValueError) as e:
        logger.error(f"Cannot decode transaction: {e}")
        raise typer.Exit(1)

    if as_json:
        typer.echo(json.dumps(asdict(decoded), indent=2, default=str))
        return

    typer.echo(f"txid:     {decoded.txid}")
    typer.echo(f"wtxid:    {decoded.wtxid}")
    typer.echo(f"version:  {decoded.version}")
    typer.echo(f"locktime: {decoded.locktime}")
    typer.echo(f"size:     {decoded.size} bytes, {decoded.vsize} vbytes ({decoded.weight} WU)")
    typer.echo(f"rbf:      {'yes' if decoded.signals_rbf else 'no'}")
    typer.echo(f"\nInputs ({len(decoded.inputs)}):")
    for i, inp in enumerate(decoded.inputs):
        typer.echo(f"  [{i}] {inp.txid}:{inp.vout} sequence={inp.sequence:#010x}")
    typer.echo(f"\nOutputs ({len(decoded.outputs)}):")
    for i, out in enumerate(decoded.outputs):
        address = out.address or f"<{out.script_type.value}: {out.script_pubkey}>"
        typer.echo(f"  [{i}] {format_amount(out.value)} -> {address}")
    typer.echo(f"\nTotal out: {format_amount(decoded.total_output_value)}")


@app.command("address-info")
def address_info(
    address: Annotated[str, typer.Argument(help="Bitcoin address")],
    network: Annotated[str | None, typer.Option("--network", "-n", help="Bitcoin network")] = None,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", "-l", help="Log level"),
    ] = None,
) -> None:
    """Show the script type and scriptPubKey of an address."""
    settings = setup_cli(log_level)

    try:
        resolved_network = resolve_network(settings, network)
        script = address_to_scriptpubkey(address, resolved_network)
    except (InvalidAddressError, ValueError) as e:
        logger.error(str(e))
        typer.echo(f"Invalid address: {e}")
        raise typer.Exit(1)

    typer.echo(f"address:      {address}")
    typer.echo(f"network:      {resolved_network.value}")
    typer.echo(f"type:         {detect_script_type(script).value}")
    typer.echo(f"scriptPubKey: {script.hex()}")
