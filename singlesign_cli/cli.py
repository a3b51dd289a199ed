"""
CLI for SingleSign
==================

Command-line interface for proving and signing aggregated typed-data files.

Commands:
    singlesign prove --file-path FILE --signer ADDR --signature HEX
        Prove every typed-data document in FILE under one EIP-191 signature
    singlesign sign-file --file-path FILE [--private-key KEY]
        Sign a file's raw bytes in EIP-191 personal mode
    singlesign image-id
        Print the guest program identity receipts are bound to
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import click
from eth_account import Account
from eth_keys.exceptions import ValidationError
from eth_utils import keccak

from singlesign_canonical import __version__
from singlesign_canonical.errors import ConsistencyError, InputError, SingleSignError
from singlesign_canonical.program import compute_image_id
from singlesign_canonical.signing import normalize_address, parse_signature_hex, sign_personal_message
from singlesign_cli.config import ProverConfig, configure_logging


def _build_prover(config: ProverConfig):
    if config.uses_enclave:
        from singlesign_tee.host.vsock_client import ProverEnclaveClient
        return ProverEnclaveClient(
            enclave_cid=config.enclave_cid,
            port=config.enclave_port,
            expected_pcr0=config.expected_pcr0,
            allow_mock_attestation=config.allow_mock_attestation,
        )

    from singlesign_tee.enclave.prover import LocalProver
    return LocalProver()


def _build_dispatcher(config: ProverConfig):
    if not config.dispatch_enabled:
        return None

    from singlesign_tee.host.permit2 import Permit2Dispatcher
    return Permit2Dispatcher(
        rpc_url=config.rpc_url,
        private_key=config.private_key,
        account_address=config.account_address,
    )


@click.group()
@click.version_option(version=__version__)
def main():
    """
    SingleSign - attest that one account signed a batch of EIP-712 documents.

    Examples:
        singlesign sign-file --file-path permits.json
        singlesign prove --file-path permits.json --signer 0xAbC... --signature 0x1234...
    """
    pass


@main.command()
@click.option("--file-path", type=click.Path(exists=True, dir_okay=False), required=True,
              help="Concatenated typed-data JSON documents")
@click.option("--signer", required=True, help="Address that produced the signature")
@click.option("--signature", required=True, help="65-byte EIP-191 signature over the whole file (hex)")
@click.option("--rpc-url", default=None, help="Ethereum RPC endpoint for Permit2 dispatch [RPC_URL]")
@click.option("--private-key", default=None, help="Key that sends dispatch transactions [PRIVATE_KEY]")
@click.option("--account-address", "-a", default=None, help="Permit owner address [ACCOUNT_ADDRESS]")
@click.option("--enclave-cid", type=int, default=None, help="vsock CID of the proving enclave [ENCLAVE_CID]")
@click.option("--image-id", default=None, help="Trusted guest image id [EXPECTED_IMAGE_ID]")
@click.option("--pcr0", default=None, help="PCR0 of the trusted enclave image [EXPECTED_PCR0]")
@click.option("--allow-mock-attestation", is_flag=True,
              help="Accept an unverified enclave attestation (development only) [ALLOW_MOCK_ATTESTATION]")
@click.option("--concurrency", "-j", type=click.IntRange(min=1), default=1, show_default=True,
              help="Documents proved in parallel")
@click.option("--output", "-o", type=click.Path(dir_okay=False), default=None,
              help="Write receipts and results to a JSON file")
@click.option("--no-dispatch", is_flag=True, help="Never submit Permit2 transactions")
@click.option("--log-level", default=None, help="Logging level [LOG_LEVEL]")
def prove(
    file_path: str,
    signer: str,
    signature: str,
    rpc_url: Optional[str],
    private_key: Optional[str],
    account_address: Optional[str],
    enclave_cid: Optional[int],
    image_id: Optional[str],
    pcr0: Optional[str],
    allow_mock_attestation: bool,
    concurrency: int,
    output: Optional[str],
    no_dispatch: bool,
    log_level: Optional[str],
):
    """
    Prove signatures over aggregated typed-data JSON.

    One receipt is produced per document. The signature must cover the raw
    bytes of the whole file.
    """
    from singlesign_tee.host.orchestrator import Orchestrator

    try:
        config = ProverConfig.from_env(
            rpc_url=rpc_url,
            private_key=private_key,
            account_address=account_address,
            enclave_cid=enclave_cid,
            expected_image_id=image_id,
            expected_pcr0=pcr0,
            allow_mock_attestation=True if allow_mock_attestation else None,
            log_level=log_level,
        )
    except ValueError as e:
        raise click.BadParameter(str(e))
    configure_logging(config.log_level)

    try:
        signer_address = normalize_address(signer)
        signature_bytes = parse_signature_hex(signature)
    except InputError as e:
        raise click.BadParameter(str(e))

    blob = Path(file_path).read_bytes()

    try:
        prover = _build_prover(config)
        # Attest the enclave before any document is sent to it
        trust_level = prover.trust_level
        orchestrator = Orchestrator(
            prover=prover,
            dispatcher=None if no_dispatch else _build_dispatcher(config),
            expected_image_id=config.expected_image_id,
            concurrency=concurrency,
        )
        results = asyncio.run(orchestrator.prove_blob(blob, signer_address, signature_bytes))
    except ConsistencyError as e:
        click.echo(f"❌ Consistency check failed, run aborted: {e}", err=True)
        sys.exit(1)
    except SingleSignError as e:
        click.echo(f"❌ {type(e).__name__}: {e}", err=True)
        sys.exit(1)
    except (ValueError, ValidationError) as e:
        click.echo(f"❌ Invalid configuration: {e}", err=True)
        sys.exit(1)

    click.echo()
    click.echo(f"📄 {len(results)} document(s) in {file_path}")
    click.echo(f"🔐 Prover trust level: {trust_level}")
    click.echo("-" * 70)
    for result in results:
        if result.ok:
            out = result.output
            click.echo(f"✅ #{result.index} {result.primary_type}")
            click.echo(f"   signer: {out.signer}")
            click.echo(f"   digest: {out.digest_hex}")
            if result.dispatch_tx:
                click.echo(f"   permitTransferFrom: {result.dispatch_tx}")
            if result.dispatch_error:
                click.echo(f"   ⚠️  dispatch failed: {result.dispatch_error}")
        else:
            click.echo(f"❌ #{result.index} {result.primary_type}: {result.error}")

    if output:
        report = {
            "file": file_path,
            "signer": signer_address,
            "image_id": orchestrator.expected_image_id,
            "trust_level": trust_level,
            "documents": [r.to_dict() for r in results],
        }
        with open(output, "w") as f:
            json.dump(report, f, indent=2)
        click.echo()
        click.echo(f"💾 Saved to {output}")

    if any(not r.ok for r in results):
        sys.exit(1)


@main.command("sign-file")
@click.option("--file-path", type=click.Path(exists=True, dir_okay=False), required=True,
              help="File whose raw bytes will be signed")
@click.option("--private-key", envvar="USER_PRIVATE_KEY", default=None,
              help="Signing key; a random key is generated if omitted [USER_PRIVATE_KEY]")
def sign_file(file_path: str, private_key: Optional[str]):
    """
    Sign a file's raw bytes and print digest, signature, and signer.
    """
    data = Path(file_path).read_bytes()
    try:
        account = Account.from_key(private_key) if private_key else Account.create()
    except (ValueError, ValidationError) as e:
        raise click.BadParameter(f"Invalid private key: {e}")

    signature = sign_personal_message(data, account.key)

    click.echo(f"File: {file_path}")
    click.echo(f"Digest (keccak256): 0x{keccak(data).hex()}")
    click.echo(f"Signature: 0x{signature.hex()}")
    click.echo(f"Signer: {account.address}")


@main.command("image-id")
def image_id():
    """Print the guest program identity."""
    click.echo(compute_image_id())


if __name__ == "__main__":
    main()
