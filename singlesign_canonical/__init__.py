"""
SingleSign Canonical Module

Canonical implementations shared by the untrusted host and the trusted
enclave (guest) side of the SingleSign attestation system.

CRITICAL: Both sides MUST import from this module. Do NOT implement separate
versions of range scanning, digesting, or signature verification.

Module Structure:
    constants.py   - Single source of truth for prefixes, lengths, domain tags
    errors.py      - Error taxonomy (ParseError, SchemaError, ...)
    ranges.py      - find_concatenated_json_ranges (document boundary scanner)
    typed_data.py  - eip712_signing_hash (canonical typed-data digest)
    signing.py     - verify_signature, MessageMode (ECDSA recovery)
    contract.py    - Input / Output records that cross the trust boundary
    receipt.py     - Attestation (sealed journal) and verify_attestation
    nitro.py       - Nitro attestation check binding the sealing key to PCR0

Security Model:
    - The host is untrusted: everything it places in an Input is re-derived
      by the guest before anything is committed
    - The guest commits only Output(signer, digest) after both checks pass
    - An Attestation exists only for Inputs that passed both checks
"""

__version__ = "0.3.0"

from singlesign_canonical.errors import (
    SingleSignError,
    ParseError,
    SchemaError,
    InputError,
    VerificationError,
    ConsistencyError,
    ProofError,
    DispatchError,
)

__all__ = [
    "__version__",
    "SingleSignError",
    "ParseError",
    "SchemaError",
    "InputError",
    "VerificationError",
    "ConsistencyError",
    "ProofError",
    "DispatchError",
]
