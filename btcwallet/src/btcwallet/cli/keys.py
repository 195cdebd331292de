"""
Key commands: generate, validate, derive.
"""

from __future__ import annotations

from typing import Annotated

import typer
from loguru import logger

from btccore.cli_common import resolve_network, setup_cli
from btccore.errors import ValidationError, WalletEngineError
from btcwallet.cli import app
from btcwallet.wallet.bip32 import (
    DerivationPath,
    HDKey,
    account_path,
    derive_address,
    private_key_to_wif,
)
from btcwallet.wallet.bip39 import (
    generate_mnemonic,
    mnemonic_to_seed,
    validate_mnemonic,
    word_count_to_strength,
)


@app.command()
def generate(
    word_count: Annotated[
        int, typer.Option("--words", "-w", help="Number of words (12, 15, 18, 21, or 24)")
    ] = 24,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", "-l", help="Log level"),
    ] = None,
) -> None:
    """Generate a new BIP39 mnemonic phrase with secure entropy."""
    setup_cli(log_level)

    try:
        mnemonic = generate_mnemonic(word_count_to_strength(word_count))
    except ValidationError as e:
        logger.error(str(e))
        raise typer.Exit(1)

    typer.echo(mnemonic)


@app.command()
def validate(
    mnemonic: Annotated[str, typer.Argument(help="Mnemonic phrase (quoted)")],
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", "-l", help="Log level"),
    ] = None,
) -> None:
    """Check a mnemonic's word count, words and checksum."""
    setup_cli(log_level)

    try:
        validate_mnemonic(mnemonic)
    except ValidationError as e:
        logger.error(str(e))
        typer.echo(f"Invalid mnemonic: {e}")
        raise typer.Exit(1)

    typer.echo("Mnemonic is valid")


@app.command()
def derive(
    mnemonic: Annotated[str, typer.Argument(help="Mnemonic phrase (quoted)")],
    path: Annotated[
        str | None,
        typer.Option("--path", help="Derivation path (default: m/84'/coin'/0'/0/0)"),
    ] = None,
    count: Annotated[
        int, typer.Option("--count", "-c", min=1, help="Number of consecutive addresses")
    ] = 1,
    network: Annotated[str | None, typer.Option("--network", "-n", help="Bitcoin network")] = None,
    passphrase: Annotated[
        str,
        typer.Option(
            "--passphrase",
            envvar="BIP39_PASSPHRASE",
            help="BIP39 passphrase (13th/25th word)",
        ),
    ] = "",
    show_private: Annotated[
        bool, typer.Option("--show-private", help="Also print the WIF private key")
    ] = False,
    show_xpub: Annotated[
        bool, typer.Option("--show-xpub", help="Print the account-level extended public key")
    ] = False,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", "-l", help="Log level"),
    ] = None,
) -> None:
    """Derive addresses from a mnemonic.

    The address type follows the purpose field of the path:
    44 -> P2PKH, 49 -> P2SH-P2WPKH, 84 -> P2WPKH, 86 -> P2TR.

    Examples:
        btc-wallet derive "abandon ... about"
        btc-wallet derive "abandon ... about" --path "m/86'/0'/0'/0/0"
        btc-wallet derive "abandon ... about" -n testnet -c 5
    """
    settings = setup_cli(log_level)

    try:
        resolved_network = resolve_network(settings, network)
        validate_mnemonic(mnemonic)
        parsed = DerivationPath.parse(path or account_path(84, resolved_network))
        seed = mnemonic_to_seed(mnemonic, passphrase)

        if show_xpub and len(parsed) >= 3:
            account = DerivationPath(parsed.components[:3])
            account_key = HDKey.from_seed(seed).derive(account)
            typer.echo(f"{account}  {account_key.to_xpub(resolved_network)}")

        base = parsed.components[:-1]
        last_index, last_hardened = parsed.components[-1] if parsed.components else (0, False)
        for offset in range(count):
            if parsed.components:
                current = DerivationPath(base + ((last_index + offset, last_hardened),))
            else:
                current = parsed
            derived = derive_address(seed, str(current), resolved_network)
            line = f"{derived.path}  {derived.address}"
            if show_private:
                line += f"  {private_key_to_wif(derived.private_key, resolved_network)}"
            typer.echo(line)
    except (WalletEngineError, ValueError) as e:
        logger.error(str(e))
        raise typer.Exit(1)
