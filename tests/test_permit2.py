"""
Permit2 permitTransferFrom dispatch.
"""

import asyncio
import copy

import pytest
from eth_utils import keccak
from web3 import AsyncWeb3

from conftest import PERMIT_DOCUMENT
from singlesign_canonical.errors import DispatchError
from singlesign_canonical.receipt import Attestation
from singlesign_tee.host.permit2 import (
    PERMIT2_ABI,
    PERMIT2_ADDRESS,
    REQUESTED_AMOUNT,
    Permit2Dispatcher,
    build_permit_transfer,
)

OWNER = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
SENDER_KEY = "0x" + "33" * 32
TX_HASH = b"\x12" * 32
SEAL = b"\x01" * 64


# ============================================================================
# CALL ARGUMENTS
# ============================================================================

def test_build_permit_transfer(signer_account):
    permit = build_permit_transfer(PERMIT_DOCUMENT, recipient=signer_account.address.lower(), owner=OWNER)

    assert permit.token == "0x1f9840a85d5aF5bf1D1762F925BDADdC4201F984"
    assert permit.amount == 5 * 10 ** 18
    assert permit.nonce == 7
    assert permit.deadline == 1900000000
    assert permit.to == signer_account.address
    assert permit.requested_amount == REQUESTED_AMOUNT
    assert permit.owner == OWNER
    assert permit.call_args(SEAL) == (
        ((permit.token, 5 * 10 ** 18), 7, 1900000000),
        (signer_account.address, REQUESTED_AMOUNT),
        OWNER,
        SEAL,
    )


def test_numeric_strings_accepted(signer_account):
    doc = copy.deepcopy(PERMIT_DOCUMENT)
    doc["message"]["nonce"] = "0x10"
    doc["message"]["permitted"]["amount"] = "1000"
    permit = build_permit_transfer(doc, signer_account.address, OWNER)
    assert permit.nonce == 16
    assert permit.amount == 1000


@pytest.mark.parametrize("mutate, match", [
    (lambda m: m.pop("nonce"), "missing 'nonce'"),
    (lambda m: m.pop("permitted"), "no 'permitted'"),
    (lambda m: m["permitted"].pop("token"), "permitted.token"),
    (lambda m: m["permitted"].update(token="0x1234"), "Invalid permit address"),
    (lambda m: m.update(deadline=True), "must be an integer"),
    (lambda m: m.update(deadline="soon"), "not a number"),
    (lambda m: m.update(nonce=-1), "uint256 range"),
])
def test_malformed_permit_rejected(mutate, match, signer_account):
    doc = copy.deepcopy(PERMIT_DOCUMENT)
    mutate(doc["message"])
    with pytest.raises(DispatchError, match=match):
        build_permit_transfer(doc, signer_account.address, OWNER)


def _word(value):
    if isinstance(value, str):
        return bytes(12) + bytes.fromhex(value[2:])
    return value.to_bytes(32, "big")


def test_call_args_encode_against_permit2_abi(signer_account):
    permit = build_permit_transfer(PERMIT_DOCUMENT, signer_account.address, OWNER)
    contract = AsyncWeb3().eth.contract(address=PERMIT2_ADDRESS, abi=PERMIT2_ABI)

    data = bytes.fromhex(contract.encode_abi("permitTransferFrom", args=list(permit.call_args(SEAL)))[2:])

    selector = keccak(text="permitTransferFrom(((address,uint256),uint256,uint256),(address,uint256),address,bytes)")[:4]
    assert data[:4] == selector
    assert data[4:] == b"".join([
        _word(permit.token),
        _word(5 * 10 ** 18),
        _word(7),
        _word(1900000000),
        _word(signer_account.address),
        _word(REQUESTED_AMOUNT),
        _word(OWNER),
        _word(8 * 32),      # offset of the dynamic signature
        _word(len(SEAL)),
        SEAL,
    ])


# ============================================================================
# DISPATCHER
# ============================================================================

@pytest.fixture
def fake_w3(mocker):
    w3 = mocker.MagicMock()
    call = w3.eth.contract.return_value.functions.permitTransferFrom.return_value
    call.build_transaction = mocker.AsyncMock(return_value={
        "to": PERMIT2_ADDRESS,
        "data": "0x30f28b7a",
        "gas": 150000,
        "gasPrice": 10 ** 9,
        "nonce": 3,
        "chainId": 1,
        "value": 0,
    })
    w3.eth.get_transaction_count = mocker.AsyncMock(return_value=3)
    w3.eth.send_raw_transaction = mocker.AsyncMock(return_value=TX_HASH)
    w3.eth.wait_for_transaction_receipt = mocker.AsyncMock(return_value={
        "status": 1,
        "transactionHash": TX_HASH,
        "blockNumber": 42,
    })
    return w3


@pytest.fixture
def dispatcher(fake_w3):
    return Permit2Dispatcher(
        rpc_url="http://localhost:8545",
        private_key=SENDER_KEY,
        account_address=OWNER.lower(),
        w3=fake_w3,
    )


@pytest.fixture
def attestation():
    return Attestation(image_id="00" * 32, journal=b"", seal=SEAL)


@pytest.mark.asyncio
async def test_dispatch_submits_permit_transfer(dispatcher, fake_w3, attestation, signer_account):
    tx = await dispatcher.dispatch(PERMIT_DOCUMENT, signer_account.address, attestation)

    assert tx == "0x" + TX_HASH.hex()

    fake_w3.eth.contract.assert_called_once()
    assert fake_w3.eth.contract.call_args.kwargs["address"] == PERMIT2_ADDRESS

    permit_fn = fake_w3.eth.contract.return_value.functions.permitTransferFrom
    permit_fn.assert_called_once_with(
        (("0x1f9840a85d5aF5bf1D1762F925BDADdC4201F984", 5 * 10 ** 18), 7, 1900000000),
        (signer_account.address, REQUESTED_AMOUNT),
        OWNER,
        SEAL,
    )
    fake_w3.eth.get_transaction_count.assert_awaited_once_with(dispatcher.sender, "pending")
    permit_fn.return_value.build_transaction.assert_awaited_once_with(
        {"from": dispatcher.sender, "nonce": 3}
    )
    fake_w3.eth.send_raw_transaction.assert_awaited_once()


@pytest.mark.asyncio
async def test_dispatch_reverted(dispatcher, fake_w3, attestation, signer_account):
    fake_w3.eth.wait_for_transaction_receipt.return_value = {
        "status": 0,
        "transactionHash": TX_HASH,
        "blockNumber": 42,
    }
    with pytest.raises(DispatchError, match="reverted"):
        await dispatcher.dispatch(PERMIT_DOCUMENT, signer_account.address, attestation)


@pytest.mark.asyncio
async def test_dispatch_rpc_failure(dispatcher, fake_w3, attestation, signer_account):
    fake_w3.eth.send_raw_transaction.side_effect = ValueError("nonce too low")
    with pytest.raises(DispatchError, match="nonce too low"):
        await dispatcher.dispatch(PERMIT_DOCUMENT, signer_account.address, attestation)


@pytest.mark.asyncio
async def test_dispatch_bad_document_sends_nothing(dispatcher, fake_w3, attestation, signer_account):
    doc = copy.deepcopy(PERMIT_DOCUMENT)
    del doc["message"]["deadline"]
    with pytest.raises(DispatchError):
        await dispatcher.dispatch(doc, signer_account.address, attestation)
    fake_w3.eth.send_raw_transaction.assert_not_awaited()


@pytest.mark.asyncio
async def test_concurrent_dispatches_use_sequential_nonces(dispatcher, fake_w3, attestation, signer_account):
    fake_w3.eth.get_transaction_count.side_effect = [3, 4]

    await asyncio.gather(
        dispatcher.dispatch(PERMIT_DOCUMENT, signer_account.address, attestation),
        dispatcher.dispatch(PERMIT_DOCUMENT, signer_account.address, attestation),
    )

    build = fake_w3.eth.contract.return_value.functions.permitTransferFrom.return_value.build_transaction
    assert [c.args[0]["nonce"] for c in build.await_args_list] == [3, 4]
