"""
SingleSign TEE Enclave Module
=============================

Files that run INSIDE the trusted execution environment.

guest.py is the program whose identity (image id) receipts are bound to;
prover.py runs it and seals its journal; tee_service.py serves both over
vsock and attests the sealing key through nsm_lib.py.
"""

from singlesign_tee.enclave.guest import run_guest
from singlesign_tee.enclave.prover import LocalProver

__all__ = [
    "run_guest",
    "LocalProver",
]
