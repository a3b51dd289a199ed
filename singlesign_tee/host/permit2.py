"""
SingleSign Permit2 Dispatch
===========================

When an attested document is a Permit2 `PermitTransferFrom`, the host submits
`permitTransferFrom` with the receipt seal as the authorization bytes.

CALL LAYOUT:
    permit        = ((token, amount), nonce, deadline)     # from the document
    transferDetails = (to=signer, requestedAmount=REQUESTED_AMOUNT)
    owner         = configured account address
    signature     = receipt seal

Submissions from one account are serialised (lock + pending nonce) so that
documents proved in parallel still land in nonce order.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3

from singlesign_canonical.errors import DispatchError, InputError
from singlesign_canonical.receipt import Attestation
from singlesign_canonical.signing import normalize_address

logger = logging.getLogger(__name__)

# Canonical Permit2 deployment (same address on every chain)
PERMIT2_ADDRESS = "0x000000000022D473030F116dDEE9F6B43aC78BA3"

# Primary type that triggers a dispatch
PERMIT_TRANSFER_FROM = "PermitTransferFrom"

# Fixed requested-amount policy (1 token at 18 decimals)
REQUESTED_AMOUNT = 1_000_000_000_000_000_000

RECEIPT_TIMEOUT_SECONDS = 180

PERMIT2_ABI = [
    {
        "name": "permitTransferFrom",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {
                "name": "permit",
                "type": "tuple",
                "components": [
                    {
                        "name": "permitted",
                        "type": "tuple",
                        "components": [
                            {"name": "token", "type": "address"},
                            {"name": "amount", "type": "uint256"},
                        ],
                    },
                    {"name": "nonce", "type": "uint256"},
                    {"name": "deadline", "type": "uint256"},
                ],
            },
            {
                "name": "transferDetails",
                "type": "tuple",
                "components": [
                    {"name": "to", "type": "address"},
                    {"name": "requestedAmount", "type": "uint256"},
                ],
            },
            {"name": "owner", "type": "address"},
            {"name": "signature", "type": "bytes"},
        ],
        "outputs": [],
    },
]


@dataclass(frozen=True)
class PermitTransfer:
    """Arguments of one permitTransferFrom call."""

    token: str
    amount: int
    nonce: int
    deadline: int
    to: str
    requested_amount: int
    owner: str

    def call_args(self, signature: bytes) -> Tuple[Any, ...]:
        return (
            ((self.token, self.amount), self.nonce, self.deadline),
            (self.to, self.requested_amount),
            self.owner,
            signature,
        )


def _uint(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise DispatchError(f"Permit field '{field}' must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        try:
            result = int(value, 16) if value.lower().startswith("0x") else int(value)
        except ValueError as e:
            raise DispatchError(f"Permit field '{field}' is not a number: {value!r}") from e
    else:
        raise DispatchError(f"Permit field '{field}' must be an integer")
    if not 0 <= result < 2 ** 256:
        raise DispatchError(f"Permit field '{field}' out of uint256 range")
    return result


def build_permit_transfer(document: Dict[str, Any], recipient: str, owner: str) -> PermitTransfer:
    """
    Extract permitTransferFrom arguments from a PermitTransferFrom document.

    Args:
        document: Parsed typed-data document
        recipient: Transfer recipient (the attested signer)
        owner: Configured account address

    Raises:
        DispatchError: Fields missing or malformed
    """
    message = document.get("message", {})
    permitted = message.get("permitted")
    if not isinstance(permitted, dict):
        raise DispatchError("Permit message has no 'permitted' object")

    for field in ("nonce", "deadline"):
        if field not in message:
            raise DispatchError(f"Permit message missing '{field}'")
    for field in ("token", "amount"):
        if field not in permitted:
            raise DispatchError(f"Permit message missing 'permitted.{field}'")

    try:
        token = normalize_address(permitted["token"])
        to = normalize_address(recipient)
        owner_address = normalize_address(owner)
    except InputError as e:
        raise DispatchError(f"Invalid permit address: {e}") from e

    return PermitTransfer(
        token=token,
        amount=_uint(permitted["amount"], "permitted.amount"),
        nonce=_uint(message["nonce"], "nonce"),
        deadline=_uint(message["deadline"], "deadline"),
        to=to,
        requested_amount=REQUESTED_AMOUNT,
        owner=owner_address,
    )


class Permit2Dispatcher:
    """
    Submits permitTransferFrom calls authorised by receipt seals.
    """

    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        account_address: str,
        permit2_address: str = PERMIT2_ADDRESS,
        w3: Optional[AsyncWeb3] = None,
    ):
        """
        Args:
            rpc_url: Ethereum JSON-RPC endpoint
            private_key: Key that pays for and sends the transaction
            account_address: Permit owner passed to permitTransferFrom
            permit2_address: Permit2 deployment
            w3: Pre-built AsyncWeb3 (tests)
        """
        self._w3 = w3 or AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self._account = Account.from_key(private_key)
        self.account_address = normalize_address(account_address)
        self._contract = self._w3.eth.contract(
            address=normalize_address(permit2_address),
            abi=PERMIT2_ABI,
        )
        self._lock = asyncio.Lock()

    @property
    def sender(self) -> str:
        return self._account.address

    async def dispatch(self, document: Dict[str, Any], signer: str, attestation: Attestation) -> str:
        """
        Submit permitTransferFrom for one attested document.

        Returns:
            Transaction hash (0x-prefixed hex)

        Raises:
            DispatchError: Bad fields, RPC failure, or reverted transaction
        """
        permit = build_permit_transfer(document, recipient=signer, owner=self.account_address)
        try:
            call = self._contract.functions.permitTransferFrom(*permit.call_args(attestation.seal))
        except Exception as e:
            raise DispatchError(f"Cannot encode permitTransferFrom: {e}") from e

        async with self._lock:
            try:
                nonce = await self._w3.eth.get_transaction_count(self.sender, "pending")
                tx = await call.build_transaction({
                    "from": self.sender,
                    "nonce": nonce,
                })
                signed = self._account.sign_transaction(tx)
                tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
                logger.info(f"📤 permitTransferFrom submitted: 0x{bytes(tx_hash).hex()} (nonce={nonce})")
                receipt = await self._w3.eth.wait_for_transaction_receipt(
                    tx_hash, timeout=RECEIPT_TIMEOUT_SECONDS
                )
            except Exception as e:
                raise DispatchError(f"permitTransferFrom submission failed: {e}") from e

        tx_hex = "0x" + bytes(receipt["transactionHash"]).hex()
        if receipt.get("status") != 1:
            raise DispatchError(f"permitTransferFrom reverted in tx {tx_hex}")

        logger.info(f"✅ permitTransferFrom confirmed in block {receipt.get('blockNumber')}: {tx_hex}")
        return tx_hex
