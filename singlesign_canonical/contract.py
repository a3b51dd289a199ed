"""
SingleSign Attestation Data Contract

Records that cross the host <-> enclave trust boundary.

INPUT (untrusted, host -> guest):
{
    "kind": "singlesign.input",
    "claimed_signer": bytes[20],
    "signature": bytes[65],
    "blob": bytes,            # the ENTIRE concatenated document blob
    "range": [start, end],    # which document this Input is about
}

OUTPUT (trusted, guest -> host, committed as the receipt journal):
{
    "kind": "singlesign.output",
    "signer": bytes[20],
    "digest": bytes[32],
}

Both records are CBOR maps. The guest MUST NOT trust any Input field: every
value is re-derived before an Output exists. Output is the only value the
host may act on.
"""

from dataclasses import dataclass
from typing import Any, Dict

import cbor2

from singlesign_canonical.constants import (
    ADDRESS_LENGTH,
    DIGEST_LENGTH,
    INPUT_RECORD_KIND,
    OUTPUT_RECORD_KIND,
)
from singlesign_canonical.errors import SchemaError
from singlesign_canonical.ranges import ByteRange
from singlesign_canonical.signing import normalize_address


def _decode_map(data: bytes, kind: str) -> Dict[str, Any]:
    try:
        record = cbor2.loads(data)
    except Exception as e:
        raise SchemaError(f"Malformed {kind} record: {e}") from e

    if not isinstance(record, dict) or record.get("kind") != kind:
        raise SchemaError(f"Not a {kind} record")
    return record


def _require_bytes(record: Dict[str, Any], key: str) -> bytes:
    value = record.get(key)
    if not isinstance(value, bytes):
        raise SchemaError(f"Field '{key}' must be bytes")
    return value


def _require_address(record: Dict[str, Any], key: str) -> str:
    value = _require_bytes(record, key)
    if len(value) != ADDRESS_LENGTH:
        raise SchemaError(f"Field '{key}' must be {ADDRESS_LENGTH} bytes, got {len(value)}")
    return normalize_address(value)


@dataclass(frozen=True)
class Input:
    """Untrusted proving request for one document of a blob."""

    claimed_signer: str
    signature: bytes
    blob: bytes
    range: ByteRange

    def to_cbor(self) -> bytes:
        return cbor2.dumps({
            "kind": INPUT_RECORD_KIND,
            "claimed_signer": bytes.fromhex(normalize_address(self.claimed_signer)[2:]),
            "signature": bytes(self.signature),
            "blob": bytes(self.blob),
            "range": [self.range.start, self.range.end],
        })

    @classmethod
    def from_cbor(cls, data: bytes) -> "Input":
        record = _decode_map(data, INPUT_RECORD_KIND)

        signer = _require_address(record, "claimed_signer")
        signature = _require_bytes(record, "signature")
        blob = _require_bytes(record, "blob")

        bounds = record.get("range")
        if (
            not isinstance(bounds, list)
            or len(bounds) != 2
            or not all(isinstance(b, int) and not isinstance(b, bool) for b in bounds)
        ):
            raise SchemaError("Field 'range' must be [start, end]")

        # Length/range checks are left to the guest; this layer only types fields
        return cls(
            claimed_signer=signer,
            signature=signature,
            blob=blob,
            range=ByteRange(bounds[0], bounds[1]),
        )


@dataclass(frozen=True)
class Output:
    """Guest-committed public result: a verified (signer, digest) pair."""

    signer: str
    digest: bytes

    @property
    def digest_hex(self) -> str:
        return "0x" + self.digest.hex()

    def to_cbor(self) -> bytes:
        return cbor2.dumps({
            "kind": OUTPUT_RECORD_KIND,
            "signer": bytes.fromhex(normalize_address(self.signer)[2:]),
            "digest": bytes(self.digest),
        })

    @classmethod
    def from_cbor(cls, data: bytes) -> "Output":
        record = _decode_map(data, OUTPUT_RECORD_KIND)
        signer = _require_address(record, "signer")
        digest = _require_bytes(record, "digest")
        if len(digest) != DIGEST_LENGTH:
            raise SchemaError(f"Field 'digest' must be {DIGEST_LENGTH} bytes, got {len(digest)}")
        return cls(signer=signer, digest=digest)

    def to_dict(self) -> Dict[str, str]:
        return {"signer": self.signer, "digest": self.digest_hex}
