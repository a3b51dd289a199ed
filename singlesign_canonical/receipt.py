"""
SingleSign Canonical Receipts

An Attestation is the proof token a proving enclave hands back for one Input:

{
    "version": 1,
    "image_id": "hex",          # SHA256 identity of the guest program
    "journal": "base64",        # CBOR Output committed by the guest
    "seal": "hex",              # Ed25519 signature by the enclave key
}

The seal covers:

    RECEIPT_DOMAIN || bytes.fromhex(image_id) || sha256(journal)

so a receipt cannot be re-bound to a different program or a different output.
An Attestation exists only if the guest ran to completion; there is no
"failed" receipt.

All verification goes through verify_attestation(). It never returns False;
any mismatch raises ProofError.
"""

import base64
import hashlib
from dataclasses import dataclass
from typing import Any, Dict

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from singlesign_canonical.constants import (
    ED25519_PUBKEY_LENGTH,
    ED25519_SIGNATURE_LENGTH,
    RECEIPT_DOMAIN,
    RECEIPT_VERSION,
)
from singlesign_canonical.contract import Output
from singlesign_canonical.errors import ProofError, SchemaError


def seal_message(image_id: str, journal: bytes) -> bytes:
    """Bytes the enclave signs for a receipt."""
    return RECEIPT_DOMAIN + bytes.fromhex(image_id) + hashlib.sha256(journal).digest()


@dataclass(frozen=True)
class Attestation:
    """Sealed guest journal bound to a program identity."""

    image_id: str
    journal: bytes
    seal: bytes

    @property
    def output(self) -> Output:
        """Decode the committed Output (unverified until verify_attestation)."""
        try:
            return Output.from_cbor(self.journal)
        except SchemaError as e:
            raise ProofError(f"Receipt journal is not an Output: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": RECEIPT_VERSION,
            "image_id": self.image_id,
            "journal": base64.b64encode(self.journal).decode(),
            "seal": self.seal.hex(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Attestation":
        if not isinstance(data, dict):
            raise ProofError(f"Malformed receipt: expected a mapping, got {type(data).__name__}")
        try:
            if data.get("version") != RECEIPT_VERSION:
                raise ProofError(f"Unsupported receipt version: {data.get('version')}")
            seal = bytes.fromhex(data["seal"])
            if len(seal) != ED25519_SIGNATURE_LENGTH:
                raise ValueError(f"seal must be {ED25519_SIGNATURE_LENGTH} bytes, got {len(seal)}")
            return cls(
                image_id=str(data["image_id"]),
                journal=base64.b64decode(data["journal"], validate=True),
                seal=seal,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ProofError(f"Malformed receipt: {e}") from e


def verify_attestation(
    attestation: Attestation,
    expected_image_id: str,
    enclave_pubkey_hex: str,
) -> Output:
    """
    Verify a receipt's seal and program identity.

    Args:
        attestation: Receipt returned by a prover
        expected_image_id: Program identity the caller trusts
        enclave_pubkey_hex: Hex Ed25519 public key of the proving enclave

    Returns:
        The committed Output

    Raises:
        ProofError: Identity mismatch, malformed key, or invalid seal
    """
    if attestation.image_id.lower() != expected_image_id.lower():
        raise ProofError(
            f"Image ID mismatch: receipt {attestation.image_id[:16]}..., "
            f"expected {expected_image_id[:16]}..."
        )

    try:
        pubkey_bytes = bytes.fromhex(enclave_pubkey_hex)
        if len(pubkey_bytes) != ED25519_PUBKEY_LENGTH:
            raise ValueError(f"expected {ED25519_PUBKEY_LENGTH} bytes, got {len(pubkey_bytes)}")
        public_key = Ed25519PublicKey.from_public_bytes(pubkey_bytes)
        message = seal_message(attestation.image_id, attestation.journal)
    except ValueError as e:
        raise ProofError(f"Cannot verify receipt: {e}") from e

    try:
        public_key.verify(attestation.seal, message)
    except InvalidSignature as e:
        raise ProofError("Receipt seal is invalid") from e

    return attestation.output
