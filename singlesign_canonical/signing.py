"""
SingleSign Canonical Signature Verification

Verify an Ethereum ECDSA (secp256k1) signature against an expected signer.

    message    : the message bytes (already hashed or raw, see MessageMode)
    signature  : 65-byte r || s || v (v = 0/1, 27/28 or EIP-155 style 35+)
    expected   : the address expected to have signed
    mode       : how to turn `message` into the 32-byte pre-hash

    RAW32      : `message` is a 32-byte pre-hash, used as-is
    KECCAK     : keccak256(message)
    PERSONAL   : EIP-191, keccak256("\\x19Ethereum Signed Message:\\n" + len + message)

FAIL-CLOSED: a mismatch raises VerificationError. There is no `False` result.
"""

from enum import Enum
from typing import Union

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys import keys
from eth_utils import is_address, keccak, to_checksum_address

from singlesign_canonical.constants import (
    DIGEST_LENGTH,
    ECDSA_SIGNATURE_LENGTH,
    PERSONAL_MESSAGE_PREFIX,
)
from singlesign_canonical.errors import InputError, VerificationError

BytesLike = Union[bytes, bytearray, memoryview]


class MessageMode(Enum):
    RAW32 = "raw32"
    KECCAK = "keccak"
    PERSONAL = "personal"


def normalize_address(address: Union[str, bytes]) -> str:
    """
    Return the EIP-55 checksum form of an address.

    Raises:
        InputError: Not a 20-byte address
    """
    if isinstance(address, (bytes, bytearray)):
        if len(address) != 20:
            raise InputError(f"Address must be 20 bytes, got {len(address)}")
        return to_checksum_address(bytes(address))
    if not isinstance(address, str) or not is_address(address):
        raise InputError(f"Invalid address: {address!r}")
    return to_checksum_address(address)


def personal_message_hash(message: BytesLike) -> bytes:
    """EIP-191 personal message pre-hash."""
    message = bytes(message)
    return keccak(PERSONAL_MESSAGE_PREFIX + str(len(message)).encode("ascii") + message)


def message_prehash(message: BytesLike, mode: MessageMode) -> bytes:
    """
    Build the 32-byte pre-hash that recovery runs against.

    Raises:
        InputError: RAW32 mode with a message that is not 32 bytes
    """
    message = bytes(message)
    if mode is MessageMode.RAW32:
        if len(message) != DIGEST_LENGTH:
            raise InputError(
                f"Raw32 mode requires a 32-byte prehash, got {len(message)} bytes"
            )
        return message
    if mode is MessageMode.KECCAK:
        return keccak(message)
    if mode is MessageMode.PERSONAL:
        return personal_message_hash(message)
    raise InputError(f"Unknown message mode: {mode!r}")


def _recovery_id(v: int) -> int:
    if v in (0, 1):
        return v
    if v in (27, 28):
        return v - 27
    if v >= 35:
        # EIP-155: v = chain_id * 2 + 35 + y_parity
        return (v - 35) % 2
    raise VerificationError(f"recovery failed: invalid recovery id v={v}")


def recover_address(prehash: BytesLike, signature: BytesLike) -> str:
    """
    Recover the checksum address that produced `signature` over `prehash`.

    Raises:
        VerificationError: Malformed signature or failed recovery
    """
    signature = bytes(signature)
    if len(signature) != ECDSA_SIGNATURE_LENGTH:
        raise VerificationError(
            f"recovery failed: signature must be {ECDSA_SIGNATURE_LENGTH} bytes, got {len(signature)}"
        )

    r = int.from_bytes(signature[0:32], "big")
    s = int.from_bytes(signature[32:64], "big")
    v = _recovery_id(signature[64])

    try:
        sig = keys.Signature(vrs=(v, r, s))
        public_key = sig.recover_public_key_from_msg_hash(bytes(prehash))
    except Exception as e:
        raise VerificationError(f"recovery failed: {e}") from e

    return public_key.to_checksum_address()


def verify_signature(
    message: BytesLike,
    signature: BytesLike,
    expected: Union[str, bytes],
    mode: MessageMode,
) -> bool:
    """
    Recover the signer of `message` and compare it with `expected`.

    Returns:
        True when the recovered address equals `expected`

    Raises:
        InputError: Bad RAW32 length or malformed expected address
        VerificationError: Recovery failed or addresses differ
    """
    expected_address = normalize_address(expected)
    prehash = message_prehash(message, mode)
    recovered = recover_address(prehash, signature)

    if recovered != expected_address:
        raise VerificationError(
            f"Recovered address {recovered} does not match expected address {expected_address}"
        )
    return True


def sign_personal_message(message: BytesLike, private_key: Union[str, bytes]) -> bytes:
    """
    Sign raw bytes in EIP-191 personal mode.

    Returns:
        65-byte r || s || v signature (v = 27/28)
    """
    signed = Account.sign_message(encode_defunct(primitive=bytes(message)), private_key)
    return bytes(signed.signature)


def parse_signature_hex(signature_hex: str) -> bytes:
    """
    Decode a 0x-prefixed (or bare) hex signature.

    Raises:
        InputError: Not hex, or not 65 bytes
    """
    value = signature_hex[2:] if signature_hex.lower().startswith("0x") else signature_hex
    try:
        raw = bytes.fromhex(value)
    except ValueError as e:
        raise InputError(f"Signature is not valid hex: {e}") from e
    if len(raw) != ECDSA_SIGNATURE_LENGTH:
        raise InputError(f"Signature must be {ECDSA_SIGNATURE_LENGTH} bytes, got {len(raw)}")
    return raw
