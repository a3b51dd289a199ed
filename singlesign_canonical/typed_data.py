"""
SingleSign Canonical Typed-Data Digest

Computes the EIP-712 signing hash of one typed-data JSON document:

    keccak256("\\x19\\x01" || domainSeparator || hashStruct(message))

The document must carry `types`, `primaryType`, `domain` and `message`.
Struct encoding is delegated to eth-account so the digest matches what any
EIP-712 wallet signs.
"""

import json
from typing import Any, Dict, Union

from eth_account.messages import encode_typed_data
from eth_utils import keccak

from singlesign_canonical.constants import EIP712_PREFIX, TYPED_DATA_REQUIRED_KEYS
from singlesign_canonical.errors import SchemaError


def parse_typed_data(document: Union[str, bytes]) -> Dict[str, Any]:
    """
    Parse a typed-data JSON document and check its top-level shape.

    Raises:
        SchemaError: Not UTF-8, not JSON, or missing/ill-typed top-level fields
    """
    if isinstance(document, (bytes, bytearray, memoryview)):
        try:
            document = bytes(document).decode("utf-8")
        except UnicodeDecodeError as e:
            raise SchemaError(f"Typed data is not valid UTF-8: {e}") from e

    try:
        typed = json.loads(document)
    except json.JSONDecodeError as e:
        raise SchemaError(f"Invalid EIP-712 typed data JSON: {e}") from e

    return check_typed_data(typed)


def check_typed_data(typed: Any) -> Dict[str, Any]:
    """Check the top-level shape of a parsed typed-data document."""
    if not isinstance(typed, dict):
        raise SchemaError("Invalid EIP-712 typed data JSON: top level is not an object")

    missing = [key for key in TYPED_DATA_REQUIRED_KEYS if key not in typed]
    if missing:
        raise SchemaError(f"Typed data missing required fields: {missing}")

    for key in ("types", "domain", "message"):
        if not isinstance(typed[key], dict):
            raise SchemaError(f"Typed data field '{key}' must be an object")
    if not isinstance(typed["primaryType"], str):
        raise SchemaError("Typed data field 'primaryType' must be a string")

    return typed


def eip712_signing_hash(document: Union[str, bytes, Dict[str, Any]]) -> bytes:
    """
    Compute the 32-byte EIP-712 digest of a typed-data document.

    Args:
        document: JSON text/bytes, or an already parsed document

    Returns:
        The digest bytes

    Raises:
        SchemaError: The document is not valid typed data
    """
    typed = check_typed_data(document) if isinstance(document, dict) else parse_typed_data(document)

    try:
        signable = encode_typed_data(full_message=typed)
    except Exception as e:
        raise SchemaError(f"Failed computing EIP-712 digest: {e}") from e

    return keccak(EIP712_PREFIX + bytes(signable.header) + bytes(signable.body))


# Name used by the guest program
verify_digest = eip712_signing_hash


def primary_type(document: Union[str, bytes, Dict[str, Any]]) -> str:
    """Return the primaryType tag of a document."""
    typed = check_typed_data(document) if isinstance(document, dict) else parse_typed_data(document)
    return typed["primaryType"]
