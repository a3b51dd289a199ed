"""
SingleSign Canonical Nitro Attestation Verification

Binds a proving enclave's sealing key to the program it runs. The enclave
requests an AWS Nitro attestation document whose user_data is:

{
    "purpose": "singlesign_receipts",
    "enclave_pubkey": "hex",    # Ed25519 key that seals receipts
    "image_id": "hex",          # guest program identity
}

TRUST MODEL:
- PCR0 (enclave image measurement) is the ROOT OF TRUST
- user_data is trusted only after the document's signature and PCR0 check out
- A mock attestation (no NSM device) proves nothing; it is accepted only
  when the caller explicitly allows it and is reported as signature-only

VERIFICATION ORDER:
1. Parse COSE_Sign1 structure (CBOR)
2. Verify certificate chain to the PINNED Amazon Nitro root
3. Verify COSE signature (ECDSA P-384 / SHA-384) with the leaf certificate
4. Compare PCR0 against the expected value
5. Decode user_data

FAIL-CLOSED: every failure raises ProofError.
"""

import base64
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import cbor2
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature
from cryptography.hazmat.primitives.serialization import Encoding

from singlesign_canonical.constants import (
    ATTESTATION_PURPOSE,
    TRUST_LEVEL_FULL_NITRO,
    TRUST_LEVEL_SIGNATURE_ONLY,
)
from singlesign_canonical.errors import ProofError

logger = logging.getLogger(__name__)

# =============================================================================
# PINNED VALUES
# =============================================================================

# Amazon Nitro root certificate (DER), pinned rather than fetched
# Source: https://aws-nitro-enclaves.amazonaws.com/AWS_NitroEnclaves_Root-G1.zip
# Valid 2019-10-28 to 2049-10-28
NITRO_ROOT_CERT_DER: bytes = bytes.fromhex(
    "3082021130820196a003020102021100f93175681b90afe11d46ccb4e4e7f856"
    "300a06082a8648ce3d0403033049310b3009060355040613025553310f300d06"
    "0355040a0c06416d617a6f6e310c300a060355040b0c03415753311b30190603"
    "5504030c126177732e6e6974726f2d656e636c61766573301e170d3139313032"
    "383133323830355a170d3439313032383134323830355a3049310b3009060355"
    "040613025553310f300d060355040a0c06416d617a6f6e310c300a060355040b"
    "0c03415753311b301906035504030c126177732e6e6974726f2d656e636c6176"
    "65733076301006072a8648ce3d020106052b8104002203620004fc0254eba608"
    "c1f36870e29ada90be46383292736e894bfff672d989444b5051e534a4b1f6db"
    "e3c0bc581a32b7b176070ede12d69a3fea211b66e752cf7dd1dd095f6f1370f4"
    "170843d9dc100121e4cf63012809664487c9796284304dc53ff4a3423040300f"
    "0603551d130101ff040530030101ff301d0603551d0e041604149025b50dd905"
    "47e796c396fa729dcf99a9df4b96300e0603551d0f0101ff040403020186300a"
    "06082a8648ce3d0403030369003066023100a37f2f91a1c9bd5ee7b8627c1698"
    "d255038e1f0343f95b63a9628c3d39809545a11ebcbf2e3b55d8aeee71b4c3d6"
    "adf3023100a2f39b1605b27028a5dd4ba069b5016e65b4fbde8fe0061d6a5319"
    "7f9cdaf5d943bc61fc2beb03cb6fee8d2302f3dff6"
)


def enclave_user_data(public_key_hex: str, image_id: str) -> Dict[str, str]:
    """user_data an enclave embeds in its attestation document."""
    return {
        "purpose": ATTESTATION_PURPOSE,
        "enclave_pubkey": public_key_hex,
        "image_id": image_id,
    }


# =============================================================================
# PARSING
# =============================================================================

def _decode_b64(attestation_b64: str) -> bytes:
    try:
        return base64.b64decode(attestation_b64, validate=True)
    except (TypeError, ValueError) as e:
        raise ProofError(f"Invalid base64 attestation: {e}") from e


def _loads(data: bytes, what: str) -> Any:
    try:
        return cbor2.loads(data)
    except Exception as e:
        raise ProofError(f"Failed to parse {what}: {e}") from e


def _parse_cose_sign1(data: bytes) -> Tuple[bytes, bytes, bytes]:
    """Return (protected, payload, signature) of a COSE_Sign1 structure."""
    cose = _loads(data, "COSE_Sign1")

    # Tag 18 = COSE_Sign1; NSM may emit it untagged
    if isinstance(cose, cbor2.CBORTag):
        cose = cose.value
    if not isinstance(cose, list) or len(cose) != 4:
        raise ProofError("Invalid COSE_Sign1: expected a 4-element array")

    protected, _unprotected, payload, signature = cose
    if not all(isinstance(part, bytes) for part in (protected, payload, signature)):
        raise ProofError("Invalid COSE_Sign1: protected, payload and signature must be bytes")
    return protected, payload, signature


def _decode_user_data(raw: Any) -> Dict[str, Any]:
    user_data = _loads(raw, "user_data") if isinstance(raw, bytes) else raw
    if not isinstance(user_data, dict):
        raise ProofError("Attestation carries no user_data map")
    return user_data


# =============================================================================
# CERTIFICATE CHAIN
# =============================================================================

def _verify_cert_signature(cert: x509.Certificate, issuer: x509.Certificate, position: int) -> None:
    issuer_key = issuer.public_key()
    if not isinstance(issuer_key, ec.EllipticCurvePublicKey):
        raise ProofError(f"Unexpected key type at position {position}: {type(issuer_key).__name__}")
    try:
        issuer_key.verify(
            cert.signature,
            cert.tbs_certificate_bytes,
            ec.ECDSA(cert.signature_hash_algorithm),
        )
    except InvalidSignature:
        raise ProofError(f"Certificate signature invalid at position {position} ({cert.subject.rfc4514_string()})")


def _verify_certificate_chain(leaf: x509.Certificate, cabundle: List[bytes], root_cert_der: bytes) -> None:
    """
    Verify leaf <- cabundle[-1] <- ... <- cabundle[0] == pinned root.

    The cabundle is ordered from ROOT to the CA closest to the leaf.
    """
    try:
        ca_certs = [x509.load_der_x509_certificate(der) for der in cabundle]
    except (TypeError, ValueError) as e:
        raise ProofError(f"Malformed CA bundle: {e}") from e

    if not ca_certs:
        raise ProofError("Empty CA bundle - cannot verify chain")

    if ca_certs[0].public_bytes(Encoding.DER) != root_cert_der:
        raise ProofError("Bundle root does not match pinned Amazon Nitro root certificate")

    _verify_cert_signature(ca_certs[0], ca_certs[0], 0)
    for i in range(1, len(ca_certs)):
        _verify_cert_signature(ca_certs[i], ca_certs[i - 1], i)
    _verify_cert_signature(leaf, ca_certs[-1], len(ca_certs))


# =============================================================================
# VERIFICATION
# =============================================================================

def verify_nitro_attestation(
    attestation_b64: str,
    expected_pcr0: str,
    root_cert_der: bytes = NITRO_ROOT_CERT_DER,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Fully verify a Nitro attestation document.

    Args:
        attestation_b64: Base64 COSE_Sign1 document from the NSM
        expected_pcr0: Hex PCR0 of the trusted enclave image
        root_cert_der: Pinned root certificate (DER)
        now: Time the leaf certificate must be valid at (default: now)

    Returns:
        The decoded user_data

    Raises:
        ProofError: Any verification step failed
    """
    protected, payload, signature = _parse_cose_sign1(_decode_b64(attestation_b64))

    document = _loads(payload, "attestation payload")
    if not isinstance(document, dict):
        raise ProofError("Attestation payload is not a map")

    cert_der = document.get("certificate")
    if not isinstance(cert_der, bytes):
        raise ProofError("No certificate found in attestation")
    try:
        leaf = x509.load_der_x509_certificate(cert_der)
    except ValueError as e:
        raise ProofError(f"Malformed attestation certificate: {e}") from e

    now = now or datetime.now(timezone.utc)
    if now < leaf.not_valid_before_utc or now > leaf.not_valid_after_utc:
        raise ProofError(
            f"Attestation certificate not valid at {now.isoformat()} "
            f"({leaf.not_valid_before_utc.isoformat()} - {leaf.not_valid_after_utc.isoformat()})"
        )

    _verify_certificate_chain(leaf, document.get("cabundle") or [], root_cert_der)

    # Sig_structure = ["Signature1", protected, external_aad, payload]
    leaf_key = leaf.public_key()
    if not isinstance(leaf_key, ec.EllipticCurvePublicKey):
        raise ProofError("Attestation certificate key is not ECDSA")
    half = len(signature) // 2
    der_signature = encode_dss_signature(
        int.from_bytes(signature[:half], "big"),
        int.from_bytes(signature[half:], "big"),
    )
    try:
        leaf_key.verify(
            der_signature,
            cbor2.dumps(["Signature1", protected, b"", payload]),
            ec.ECDSA(hashes.SHA384()),
        )
    except InvalidSignature:
        raise ProofError("COSE signature verification failed - attestation may be forged")

    pcr0 = (document.get("pcrs") or {}).get(0)
    if not isinstance(pcr0, bytes):
        raise ProofError("PCR0 not found in attestation")
    if pcr0.hex() != expected_pcr0.lower():
        raise ProofError(f"PCR0 mismatch: got {pcr0.hex()[:32]}..., expected {expected_pcr0[:32]}...")

    return _decode_user_data(document.get("user_data"))


def decode_mock_attestation(attestation_b64: str) -> Dict[str, Any]:
    """
    Read user_data from a mock attestation. Nothing is verified.
    """
    document = _loads(_decode_b64(attestation_b64), "mock attestation")
    if not isinstance(document, dict) or document.get("mock") is not True:
        raise ProofError("Not a mock attestation")
    return _decode_user_data(document.get("user_data"))


def verify_enclave_identity(
    attestation: Dict[str, Any],
    expected_pcr0: Optional[str] = None,
    allow_mock: bool = False,
    root_cert_der: bytes = NITRO_ROOT_CERT_DER,
) -> Tuple[Dict[str, str], str]:
    """
    Check an enclave's get_attestation response.

    Args:
        attestation: {"attestation_b64": ..., "is_mock": bool, ...}
        expected_pcr0: Trusted enclave image measurement (required for real documents)
        allow_mock: Accept a mock attestation (development only)
        root_cert_der: Pinned root certificate (DER)

    Returns:
        ({"enclave_pubkey": hex, "image_id": hex}, trust_level)

    Raises:
        ProofError: Attestation missing, unverifiable, or not for SingleSign
    """
    attestation_b64 = attestation.get("attestation_b64")
    if not isinstance(attestation_b64, str):
        raise ProofError("Attestation response has no attestation_b64")

    if attestation.get("is_mock"):
        if not allow_mock:
            raise ProofError("Enclave returned a mock attestation; sealing key is not bound to measured code")
        user_data = decode_mock_attestation(attestation_b64)
        trust_level = TRUST_LEVEL_SIGNATURE_ONLY
        logger.warning("⚠️ Accepting MOCK enclave attestation: receipts are signature-only")
    else:
        if not expected_pcr0:
            raise ProofError("No expected PCR0 configured; cannot verify enclave attestation")
        user_data = verify_nitro_attestation(attestation_b64, expected_pcr0, root_cert_der)
        trust_level = TRUST_LEVEL_FULL_NITRO

    if user_data.get("purpose") != ATTESTATION_PURPOSE:
        raise ProofError(f"Attestation purpose mismatch: {user_data.get('purpose')!r}")

    pubkey = user_data.get("enclave_pubkey")
    image_id = user_data.get("image_id")
    if not isinstance(pubkey, str) or not isinstance(image_id, str):
        raise ProofError("Attestation user_data lacks enclave_pubkey / image_id")

    return {"enclave_pubkey": pubkey, "image_id": image_id}, trust_level
