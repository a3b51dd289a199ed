"""
SingleSign Canonical Constants

This module is the SINGLE SOURCE OF TRUTH for constants shared by the host,
the enclave and the verifier tooling.

Changing any value below changes either the signed bytes or the program
identity, so host and enclave deployments must be updated together.
"""

# =============================================================================
# SIGNATURE / HASH SIZES
# =============================================================================

# secp256k1 ECDSA signature: r (32) || s (32) || v (1)
ECDSA_SIGNATURE_LENGTH = 65

# keccak256 / EIP-712 digest length in bytes
DIGEST_LENGTH = 32

# Ethereum address length in bytes
ADDRESS_LENGTH = 20

# Ed25519 sizes (enclave sealing key)
ED25519_SIGNATURE_LENGTH = 64
ED25519_PUBKEY_LENGTH = 32


# =============================================================================
# MESSAGE PREFIXES
# =============================================================================

# EIP-191 personal message header; the decimal message length follows it
PERSONAL_MESSAGE_PREFIX = b"\x19Ethereum Signed Message:\n"

# EIP-712 prefix ("\x19\x01")
EIP712_PREFIX = b"\x19\x01"


# =============================================================================
# TYPED DATA
# =============================================================================

# Top-level keys every typed-data document must carry
TYPED_DATA_REQUIRED_KEYS = ("types", "primaryType", "domain", "message")


# =============================================================================
# RECEIPTS
# =============================================================================

# Domain separation tag for enclave seals over (image_id, journal)
RECEIPT_DOMAIN = b"SINGLESIGN_RECEIPT|v1|"

# Receipt format version written into serialized receipts
RECEIPT_VERSION = 1


# =============================================================================
# CONTRACT RECORD TAGS
# =============================================================================

# "kind" discriminator embedded in every serialized boundary record
INPUT_RECORD_KIND = "singlesign.input"
OUTPUT_RECORD_KIND = "singlesign.output"


# =============================================================================
# VSOCK
# =============================================================================

AF_VSOCK = 40  # Address family for vsock
VMADDR_CID_ANY = 0xFFFFFFFF  # Bind to any CID (inside enclave)
PROVER_RPC_PORT = 5005  # Must match on host and enclave


# =============================================================================
# ENCLAVE ATTESTATION
# =============================================================================

# user_data.purpose of the attestation that binds the sealing key to a program
ATTESTATION_PURPOSE = "singlesign_receipts"

# Full Nitro attestation verified (certificate chain, COSE signature, PCR0)
TRUST_LEVEL_FULL_NITRO = "full_nitro"

# Mock attestation accepted; the enclave key is NOT bound to measured code
TRUST_LEVEL_SIGNATURE_ONLY = "signature_only"

# In-process prover, no enclave boundary
TRUST_LEVEL_LOCAL = "local"
