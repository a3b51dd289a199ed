"""
SingleSign TEE vsock Client
===========================

This module runs on the HOST and talks to the proving enclave over vsock.
It exposes the same prover interface as LocalProver, so the orchestrator
does not care which one it holds.

Usage:
    from singlesign_tee.host.vsock_client import ProverEnclaveClient

    client = ProverEnclaveClient(enclave_cid=16, expected_pcr0=PCR0_HEX)
    attestation = client.prove(guest_input)
    output = client.verify(attestation, expected_image_id)
"""

import base64
import json
import logging
import socket
import subprocess
from typing import Any, Dict, Optional

from singlesign_canonical.constants import AF_VSOCK, PROVER_RPC_PORT
from singlesign_canonical.contract import Input, Output
from singlesign_canonical.errors import ProofError
from singlesign_canonical.nitro import verify_enclave_identity
from singlesign_canonical.receipt import Attestation, verify_attestation

logger = logging.getLogger(__name__)

# Proving is long-running; no mid-flight cancellation
DEFAULT_TIMEOUT_SECONDS = 600


def get_enclave_cid() -> Optional[int]:
    """
    Ask nitro-cli for the CID of the first running enclave.

    Returns:
        Enclave CID or None if not running
    """
    try:
        result = subprocess.run(
            ["nitro-cli", "describe-enclaves"],
            capture_output=True,
            text=True,
        )
    except FileNotFoundError:
        logger.debug("[vsock] nitro-cli not installed")
        return None

    if result.returncode != 0:
        return None

    try:
        enclaves = json.loads(result.stdout)
    except json.JSONDecodeError as e:
        logger.warning(f"[vsock] Unexpected nitro-cli output: {e}")
        return None

    for enclave in enclaves:
        if enclave.get("State") == "RUNNING":
            return enclave.get("EnclaveCID")

    return None


class ProverEnclaveClient:
    """
    Client for the SingleSign proving enclave.

    The sealing key and image id are taken from the enclave's attestation
    document, never from an unauthenticated reply. A real document is checked
    against the Nitro root and expected_pcr0; a mock one is accepted only when
    allow_mock_attestation is set, and the client then reports signature-only
    trust.
    """

    def __init__(
        self,
        enclave_cid: Optional[int] = None,
        port: int = PROVER_RPC_PORT,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        expected_pcr0: Optional[str] = None,
        allow_mock_attestation: bool = False,
    ):
        """
        Args:
            enclave_cid: Enclave CID (auto-detected if not provided)
            port: vsock port of tee_service.py
            timeout: Socket timeout in seconds
            expected_pcr0: PCR0 of the trusted enclave image (hex)
            allow_mock_attestation: Accept a mock attestation (development only)
        """
        self.enclave_cid = enclave_cid
        self.port = port
        self.timeout = timeout
        self.expected_pcr0 = expected_pcr0
        self.allow_mock_attestation = allow_mock_attestation
        self._cached_pubkey: Optional[str] = None
        self._cached_image_id: Optional[str] = None
        self._trust_level: Optional[str] = None

    def _get_cid(self) -> int:
        if self.enclave_cid is not None:
            return self.enclave_cid

        cid = get_enclave_cid()
        if cid is None:
            raise ProofError("No running proving enclave found")

        self.enclave_cid = cid
        return cid

    def _send_request(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """
        Send one request to the enclave and return its response.

        Raises:
            ProofError: Transport failure or enclave-side error
        """
        cid = self._get_cid()

        sock = socket.socket(AF_VSOCK, socket.SOCK_STREAM)
        sock.settimeout(self.timeout)

        try:
            sock.connect((cid, self.port))
            sock.sendall(json.dumps(request).encode())
            sock.shutdown(socket.SHUT_WR)

            response_data = b""
            while True:
                chunk = sock.recv(4096)
                if not chunk:
                    break
                response_data += chunk
        except OSError as e:
            raise ProofError(f"Enclave unreachable at CID {cid}:{self.port}: {e}") from e
        finally:
            sock.close()

        try:
            response = json.loads(response_data.decode())
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ProofError(f"Invalid response from enclave: {e}") from e

        if not isinstance(response, dict):
            raise ProofError("Invalid response from enclave: expected a JSON object")

        if response.get("status") != "ok":
            raise ProofError(f"Enclave error: {response.get('error')}")

        return response

    def _load_identity(self) -> None:
        """Fetch and verify the enclave attestation, then cache its identity."""
        response = self._send_request({"command": "get_attestation"})
        identity, trust_level = verify_enclave_identity(
            response,
            expected_pcr0=self.expected_pcr0,
            allow_mock=self.allow_mock_attestation,
        )
        self._cached_pubkey = identity["enclave_pubkey"]
        self._cached_image_id = identity["image_id"]
        self._trust_level = trust_level
        logger.info(
            f"[vsock] Enclave identity attested ({trust_level}): "
            f"pubkey={self._cached_pubkey[:16]}..., image_id={self._cached_image_id[:16]}..."
        )

    @property
    def public_key_hex(self) -> str:
        if self._cached_pubkey is None:
            self._load_identity()
        return self._cached_pubkey

    @property
    def image_id(self) -> str:
        if self._cached_image_id is None:
            self._load_identity()
        return self._cached_image_id

    @property
    def trust_level(self) -> str:
        if self._trust_level is None:
            self._load_identity()
        return self._trust_level

    def prove(self, guest_input: Input) -> Attestation:
        """
        Prove one Input inside the enclave.

        Raises:
            ProofError: Guest aborted, transport failure, malformed response,
                or receipt sealed by a key other than the attested one
        """
        expected_pubkey = self.public_key_hex

        response = self._send_request({
            "command": "prove",
            "input_b64": base64.b64encode(guest_input.to_cbor()).decode(),
        })

        if "receipt" not in response:
            raise ProofError("Malformed enclave response: missing receipt")

        # Key returned with the receipt must match the attested one
        if response.get("public_key") != expected_pubkey:
            raise ProofError("Enclave sealing key changed between requests")

        return Attestation.from_dict(response["receipt"])

    def verify(self, attestation: Attestation, expected_image_id: Optional[str] = None) -> Output:
        """
        Verify a receipt against the attested enclave key and a program identity.

        Raises:
            ProofError: Bad seal, or the enclave attested a different program
        """
        if expected_image_id is not None and expected_image_id.lower() != self.image_id.lower():
            raise ProofError(
                f"Enclave runs image {self.image_id[:16]}..., expected {expected_image_id[:16]}..."
            )
        return verify_attestation(attestation, self.image_id, self.public_key_hex)

    def health_check(self) -> Dict[str, Any]:
        return self._send_request({"command": "health"})
