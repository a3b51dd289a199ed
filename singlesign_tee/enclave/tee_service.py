#!/usr/bin/env python3
"""
SingleSign TEE Service (Runs Inside the Enclave)
================================================

Serves the LocalProver to the parent host over vsock:
- Ed25519 sealing key generated per boot, never leaves the enclave
- Proves one Input per request and returns the sealed receipt
- Attests the sealing key and guest program identity via the NSM

PROTOCOL (one JSON request per connection, host closes its write side):
    {"command": "get_attestation"}
    {"command": "get_public_key"}
    {"command": "get_image_id"}
    {"command": "prove", "input_b64": "<CBOR Input, base64>"}
    {"command": "health"}

Responses carry "status": "ok" | "error". A failed guest run is reported as
a generic error; the reason is never sent back to the host.

get_public_key is informational only. Hosts must take the sealing key from
get_attestation, whose user_data commits (enclave_pubkey, image_id) and is
signed by the Nitro hypervisor.
"""

import base64
import json
import logging
import socket
from datetime import datetime, timezone
from typing import Any, Dict

import cbor2

from singlesign_canonical.constants import AF_VSOCK, PROVER_RPC_PORT, VMADDR_CID_ANY
from singlesign_canonical.contract import Input
from singlesign_canonical.errors import ProofError, SchemaError
from singlesign_canonical.nitro import enclave_user_data
from singlesign_tee.enclave import nsm_lib
from singlesign_tee.enclave.prover import LocalProver

logger = logging.getLogger(__name__)

# ============================================================================
# ATTESTATION
# ============================================================================

def get_attestation_document(prover: LocalProver) -> Dict[str, Any]:
    """
    Generate an attestation document binding the sealing key to the program.

    user_data = CBOR {"purpose", "enclave_pubkey", "image_id"}; the raw
    Ed25519 key also goes in the NSM public_key field.

    Outside a Nitro Enclave the NSM is unavailable and a mock document is
    returned with is_mock=True. Hosts reject mocks unless explicitly allowed.
    """
    user_data = enclave_user_data(prover.public_key_hex, prover.image_id)
    user_data_cbor = cbor2.dumps(user_data)

    try:
        document = nsm_lib.get_attestation_document(
            user_data=user_data_cbor,
            public_key=bytes.fromhex(prover.public_key_hex),
        )
        return {
            "attestation_b64": base64.b64encode(document).decode(),
            "user_data": user_data,
            "is_mock": False,
        }
    except nsm_lib.NSMError as e:
        logger.warning(f"[TEE] ⚠️  NSM unavailable ({e}); returning MOCK attestation")
        mock = cbor2.dumps({
            "mock": True,
            "user_data": user_data,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })
        return {
            "attestation_b64": base64.b64encode(mock).decode(),
            "user_data": user_data,
            "is_mock": True,
        }


# ============================================================================
# RPC HANDLER
# ============================================================================

def handle_request(request: Any, prover: LocalProver) -> Dict[str, Any]:
    """
    Handle RPC request from the parent host.

    Supported commands:
    - get_attestation: Return NSM attestation over sealing key and image id
    - get_public_key: Return enclave sealing key and image id (unattested)
    - get_image_id: Return guest program identity
    - prove: Run the guest on a CBOR Input and return the receipt
    - health: Health check

    Never raises on bad input; every failure becomes {"status": "error"}.
    """
    if not isinstance(request, dict):
        return {"status": "error", "error": "Malformed request: expected a JSON object"}

    command = request.get("command")

    try:
        if command == "get_attestation":
            return {"status": "ok", **get_attestation_document(prover)}

        elif command == "get_public_key":
            return {
                "status": "ok",
                "public_key": prover.public_key_hex,
                "image_id": prover.image_id,
            }

        elif command == "get_image_id":
            return {"status": "ok", "image_id": prover.image_id}

        elif command == "prove":
            input_b64 = request.get("input_b64")
            if not input_b64:
                return {"status": "error", "error": "Missing input_b64"}
            if not isinstance(input_b64, str):
                return {"status": "error", "error": "Malformed request: input_b64 must be a string"}

            guest_input = Input.from_cbor(base64.b64decode(input_b64, validate=True))
            attestation = prover.prove(guest_input)
            return {
                "status": "ok",
                "receipt": attestation.to_dict(),
                "public_key": prover.public_key_hex,
            }

        elif command == "health":
            return {
                "status": "ok",
                "service": "singlesign_tee",
                "image_id": prover.image_id,
            }

        else:
            return {"status": "error", "error": f"Unknown command: {command}"}

    except (ProofError, SchemaError) as e:
        logger.info(f"[TEE] Request {command} rejected: {e}")
        return {"status": "error", "error": str(e)}
    except (ValueError, TypeError) as e:
        return {"status": "error", "error": f"Malformed request: {e}"}


# ============================================================================
# VSOCK SERVER
# ============================================================================

def _read_request(client: socket.socket) -> bytes:
    data = b""
    while True:
        chunk = client.recv(4096)
        if not chunk:
            break
        data += chunk
    return data


def serve_connection(client: socket.socket, addr: Any, prover: LocalProver) -> None:
    """Read one request from a connection, answer it, and close it."""
    try:
        data = _read_request(client)
        if not data:
            return

        try:
            request = json.loads(data.decode())
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            response = {"status": "error", "error": f"Invalid JSON request: {e}"}
        else:
            command = request.get("command") if isinstance(request, dict) else None
            logger.debug(f"[TEE] Request from CID {addr[0]}: {command}")
            response = handle_request(request, prover)

        client.sendall(json.dumps(response).encode())
    finally:
        client.close()


def run_vsock_server(prover: LocalProver, port: int = PROVER_RPC_PORT) -> None:
    """
    Run vsock server handling requests from the parent host.

    A failing connection is logged and dropped; the server keeps serving.
    """
    logger.info(f"[TEE] Starting vsock server on port {port}...")

    server = socket.socket(AF_VSOCK, socket.SOCK_STREAM)
    server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    server.bind((VMADDR_CID_ANY, port))
    server.listen(5)

    logger.info(f"[TEE] ✅ Listening on vsock port {port} (image_id={prover.image_id[:16]}...)")

    while True:
        client, addr = server.accept()
        try:
            serve_connection(client, addr, prover)
        except OSError as e:
            logger.error(f"[TEE] ❌ Connection error: {e}")
        except Exception as e:
            logger.exception(f"[TEE] ❌ Unhandled error serving request: {e}")


# ============================================================================
# MAIN
# ============================================================================

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    enclave_prover = LocalProver()
    logger.info("=" * 60)
    logger.info("🔐 SINGLESIGN TEE SERVICE")
    logger.info(f"   Public Key: {enclave_prover.public_key_hex[:32]}...")
    logger.info(f"   Image ID:   {enclave_prover.image_id[:32]}...")
    logger.info("=" * 60)

    run_vsock_server(enclave_prover)
