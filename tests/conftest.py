"""
Shared fixtures: deterministic keys, typed-data documents and signed blobs.
"""

import json

import pytest
from eth_account import Account

from singlesign_canonical.signing import sign_personal_message
from singlesign_tee.enclave.prover import LocalProver

SIGNER_KEY = "0x" + "11" * 32
OTHER_KEY = "0x" + "22" * 32

# EIP-712 reference example ("Ether Mail")
MAIL_DOCUMENT = {
    "types": {
        "EIP712Domain": [
            {"name": "name", "type": "string"},
            {"name": "version", "type": "string"},
            {"name": "chainId", "type": "uint256"},
            {"name": "verifyingContract", "type": "address"},
        ],
        "Person": [
            {"name": "name", "type": "string"},
            {"name": "wallet", "type": "address"},
        ],
        "Mail": [
            {"name": "from", "type": "Person"},
            {"name": "to", "type": "Person"},
            {"name": "contents", "type": "string"},
        ],
    },
    "primaryType": "Mail",
    "domain": {
        "name": "Ether Mail",
        "version": "1",
        "chainId": 1,
        "verifyingContract": "0xCcCCccccCCCCcCCCCCCcCcCccCcCCCcCcccccccC",
    },
    "message": {
        "from": {"name": "Cow", "wallet": "0xCD2a3d9F938E13CD947Ec05AbC7FE734Df8DD826"},
        "to": {"name": "Bob", "wallet": "0xbBbBBBBbbBBBbbbBbbBbbbbBBbBbbbbBbBbbBBbB"},
        "contents": "Hello, Bob!",
    },
}

# keccak256 digest published with the EIP-712 reference example
MAIL_DIGEST = bytes.fromhex("be609aee343fb3c4b28e1df9e632fca64fcfaede20f02e86244efddf30957bd2")

PERMIT_DOCUMENT = {
    "types": {
        "EIP712Domain": [
            {"name": "name", "type": "string"},
            {"name": "chainId", "type": "uint256"},
            {"name": "verifyingContract", "type": "address"},
        ],
        "TokenPermissions": [
            {"name": "token", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "PermitTransferFrom": [
            {"name": "permitted", "type": "TokenPermissions"},
            {"name": "spender", "type": "address"},
            {"name": "nonce", "type": "uint256"},
            {"name": "deadline", "type": "uint256"},
        ],
    },
    "primaryType": "PermitTransferFrom",
    "domain": {
        "name": "Permit2",
        "chainId": 1,
        "verifyingContract": "0x000000000022D473030F116dDEE9F6B43aC78BA3",
    },
    "message": {
        "permitted": {
            "token": "0x1f9840a85d5aF5bf1D1762F925BDADdC4201F984",
            "amount": 5000000000000000000,
        },
        "spender": "0x5FbDB2315678afecb367f032d93F642f64180aa3",
        "nonce": 7,
        "deadline": 1900000000,
    },
}


def compact(document) -> str:
    return json.dumps(document, separators=(",", ":"))


def flip_bit(data: bytes, byte_index: int, bit: int = 0) -> bytes:
    mutated = bytearray(data)
    mutated[byte_index] ^= 1 << bit
    return bytes(mutated)


@pytest.fixture
def signer_account():
    return Account.from_key(SIGNER_KEY)


@pytest.fixture
def other_account():
    return Account.from_key(OTHER_KEY)


@pytest.fixture
def two_doc_blob() -> bytes:
    """Mail document then Permit document, separated by a newline."""
    return (compact(MAIL_DOCUMENT) + "\n" + compact(PERMIT_DOCUMENT)).encode("utf-8")


@pytest.fixture
def blob_signature(two_doc_blob, signer_account) -> bytes:
    return sign_personal_message(two_doc_blob, signer_account.key)


@pytest.fixture
def prover() -> LocalProver:
    return LocalProver()
