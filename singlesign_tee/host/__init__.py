"""
SingleSign TEE Host Module
==========================

Files that run on the HOST, outside the enclave. Nothing here is trusted:
receipts are the only results the host acts on.
"""

from singlesign_tee.host.orchestrator import DocumentResult, Orchestrator
from singlesign_tee.host.permit2 import Permit2Dispatcher, build_permit_transfer
from singlesign_tee.host.vsock_client import ProverEnclaveClient, get_enclave_cid

__all__ = [
    "DocumentResult",
    "Orchestrator",
    "Permit2Dispatcher",
    "build_permit_transfer",
    "ProverEnclaveClient",
    "get_enclave_cid",
]
