"""
SingleSign error taxonomy.

    ParseError         - blob is not a clean concatenation of JSON objects
    SchemaError        - a document is not valid typed data
    InputError         - a caller passed a malformed value (length, address)
    VerificationError  - recovered signer does not match the claimed signer
    ConsistencyError   - host recomputation disagrees with the guest journal
    ProofError         - proving or receipt verification failed
    DispatchError      - on-chain follow-on call failed

ParseError and SchemaError abort a whole blob before any proving starts.
ProofError is per document. ConsistencyError aborts the run.
DispatchError only affects the follow-on step.
"""


class SingleSignError(Exception):
    """Base class for all SingleSign failures."""


class ParseError(SingleSignError, ValueError):
    pass


class SchemaError(SingleSignError, ValueError):
    pass


class InputError(SingleSignError, ValueError):
    pass


class VerificationError(SingleSignError):
    pass


class ConsistencyError(SingleSignError):
    pass


class ProofError(SingleSignError):
    pass


class DispatchError(SingleSignError):
    pass
