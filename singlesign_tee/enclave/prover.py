"""
SingleSign Local Prover
=======================

In-process proving enclave: runs the guest program on an Input and seals the
committed Output with the enclave's Ed25519 key.

SECURITY MODEL:
- The sealing key is generated inside the prover and never exported
- The seal binds (image_id, journal); see singlesign_canonical.receipt
- A guest failure yields NO receipt. The caller only learns that proving
  aborted; the reason stays in the enclave log

The host talks to this class directly (local mode) or through
tee_service.py over vsock (enclave mode). Both expose the same interface:
prove(), verify(), image_id, public_key_hex, trust_level.
"""

import logging
from typing import Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from singlesign_canonical.constants import TRUST_LEVEL_LOCAL
from singlesign_canonical.contract import Input, Output
from singlesign_canonical.errors import ProofError, SingleSignError
from singlesign_canonical.program import compute_image_id
from singlesign_canonical.receipt import Attestation, seal_message, verify_attestation
from singlesign_tee.enclave.guest import run_guest

logger = logging.getLogger(__name__)

GUEST_ABORTED = "guest execution aborted; no attestation produced"


class LocalProver:
    """
    Proving enclave running in the current process.
    """

    def __init__(
        self,
        private_key: Optional[Ed25519PrivateKey] = None,
        image_id: Optional[str] = None,
    ):
        """
        Args:
            private_key: Sealing key (ephemeral key generated if not provided)
            image_id: Program identity override (computed from source if not provided)
        """
        self._private_key = private_key or Ed25519PrivateKey.generate()
        self._image_id = image_id or compute_image_id()
        self._public_key_hex = self._private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        ).hex()
        logger.debug(f"Local prover ready: pubkey={self._public_key_hex[:16]}..., image_id={self._image_id[:16]}...")

    @property
    def image_id(self) -> str:
        return self._image_id

    @property
    def public_key_hex(self) -> str:
        return self._public_key_hex

    @property
    def trust_level(self) -> str:
        # Key held in this process; nothing to attest
        return TRUST_LEVEL_LOCAL

    def prove(self, guest_input: Input) -> Attestation:
        """
        Run the guest and seal its Output.

        Raises:
            ProofError: The guest aborted (reason is logged, not returned)
        """
        try:
            output = run_guest(guest_input)
        except SingleSignError as e:
            logger.debug(f"[enclave] Guest aborted for range {guest_input.range}: {e}")
            raise ProofError(GUEST_ABORTED) from None

        journal = output.to_cbor()
        seal = self._private_key.sign(seal_message(self._image_id, journal))
        return Attestation(image_id=self._image_id, journal=journal, seal=seal)

    def verify(self, attestation: Attestation, expected_image_id: Optional[str] = None) -> Output:
        """Verify a receipt against this enclave's key and a program identity."""
        return verify_attestation(
            attestation,
            expected_image_id or self._image_id,
            self._public_key_hex,
        )
