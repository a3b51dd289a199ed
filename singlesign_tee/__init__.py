"""
SingleSign TEE Module
=====================

Host and enclave sides of the signature attestation flow.

    enclave/  - runs INSIDE the trusted environment: guest program, prover,
                vsock RPC service
    host/     - runs OUTSIDE: orchestrator, vsock client, Permit2 dispatch

SECURITY CONSTRAINTS:
- The enclave does NOT expose a generic sign(bytes) API
- It seals only Outputs the guest program produced itself
- A failed guest run produces no receipt and no detailed reason

Usage:
    from singlesign_tee.enclave.prover import LocalProver
    from singlesign_tee.host.orchestrator import Orchestrator

    orchestrator = Orchestrator(LocalProver())
    results = asyncio.run(orchestrator.prove_blob(blob, signer, signature))
"""
