"""
SingleSign Guest Program (Runs Inside the Enclave)
===================================================

Given one untrusted Input:

1. Slice blob[range.start:range.end], parse it as typed data and compute its
   EIP-712 digest
2. Verify the signature over the ENTIRE blob in EIP-191 personal mode against
   claimed_signer (one signature authorises every document of the blob)
3. Commit Output(signer=claimed_signer, digest)

Any failure raises and nothing is committed. The guest never assumes the host
already checked anything.
"""

from singlesign_canonical.contract import Input, Output
from singlesign_canonical.signing import MessageMode, verify_signature
from singlesign_canonical.typed_data import verify_digest


def run_guest(guest_input: Input) -> Output:
    """
    Execute the guest program on one Input.

    Raises:
        ParseError: Range outside the blob
        SchemaError: Selected document is not valid typed data
        InputError / VerificationError: Signature does not verify
    """
    document = guest_input.range.slice(guest_input.blob)
    digest = verify_digest(document)

    verify_signature(
        guest_input.blob,
        guest_input.signature,
        guest_input.claimed_signer,
        MessageMode.PERSONAL,
    )

    return Output(signer=guest_input.claimed_signer, digest=digest)
