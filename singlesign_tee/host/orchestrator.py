"""
SingleSign Host Orchestrator
============================

Untrusted driver: turns one signed blob into one receipt per document.

FLOW (per blob):
1. Scan document boundaries and digest every document locally
   (ParseError / SchemaError abort the blob before any proving)
2. Per document, in parallel up to `concurrency`:
   a. Build Input(signer, signature, blob, range)
   b. Prove it (ProofError -> this document failed, others continue)
   c. Compare the journal with the local digest and signer
      (ConsistencyError -> the whole run aborts)
   d. Verify the receipt against the known image id (ProofError per document)
   e. PermitTransferFrom documents -> Permit2 dispatch
      (DispatchError is recorded, the receipt stands)

The host's own digests are never acted on directly; they only cross-check the
guest's journal.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from singlesign_canonical.contract import Input, Output
from singlesign_canonical.errors import ConsistencyError, DispatchError, ProofError
from singlesign_canonical.program import compute_image_id
from singlesign_canonical.ranges import ByteRange, find_concatenated_json_ranges
from singlesign_canonical.receipt import Attestation
from singlesign_canonical.signing import normalize_address
from singlesign_canonical.typed_data import eip712_signing_hash, parse_typed_data
from singlesign_tee.host.permit2 import PERMIT_TRANSFER_FROM

logger = logging.getLogger(__name__)


@dataclass
class DocumentResult:
    """Outcome for one document of a blob."""

    index: int
    range: ByteRange
    primary_type: str
    expected_digest: bytes
    attestation: Optional[Attestation] = None
    error: Optional[str] = None
    dispatch_tx: Optional[str] = None
    dispatch_error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.attestation is not None and self.error is None

    @property
    def output(self) -> Optional[Output]:
        return self.attestation.output if self.attestation is not None else None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "index": self.index,
            "range": [self.range.start, self.range.end],
            "primary_type": self.primary_type,
            "ok": self.ok,
        }
        if self.attestation is not None:
            data.update(self.output.to_dict())
            data["receipt"] = self.attestation.to_dict()
        if self.error:
            data["error"] = self.error
        if self.dispatch_tx:
            data["dispatch_tx"] = self.dispatch_tx
        if self.dispatch_error:
            data["dispatch_error"] = self.dispatch_error
        return data


class Orchestrator:
    """
    Drives one proving run per document of a blob.

    `prover` is any object with prove(Input) -> Attestation and
    verify(Attestation, image_id) -> Output (LocalProver or
    ProverEnclaveClient). Both calls block and run in worker threads.
    """

    def __init__(
        self,
        prover,
        dispatcher=None,
        expected_image_id: Optional[str] = None,
        concurrency: int = 1,
    ):
        """
        Args:
            prover: Proving subsystem
            dispatcher: Optional Permit2Dispatcher for recognised documents
            expected_image_id: Trusted program identity (computed from the
                               local guest source if not provided)
            concurrency: Maximum documents proved at once
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self.prover = prover
        self.dispatcher = dispatcher
        self.expected_image_id = expected_image_id or compute_image_id()
        self.concurrency = concurrency

    async def prove_blob(
        self,
        blob: Union[bytes, str],
        signer: str,
        signature: bytes,
    ) -> List[DocumentResult]:
        """
        Prove every document of `blob` under one signature.

        Returns:
            One DocumentResult per document, in blob order

        Raises:
            ParseError: Blob is not a clean concatenation of objects
            SchemaError: Some document is not typed data
            ConsistencyError: A journal disagrees with the host recomputation
        """
        if isinstance(blob, str):
            blob = blob.encode("utf-8")
        signer = normalize_address(signer)

        ranges = find_concatenated_json_ranges(blob)
        logger.info(f"Digest ranges: {[(r.start, r.end) for r in ranges]}")

        documents = [parse_typed_data(r.slice(blob)) for r in ranges]
        results = [
            DocumentResult(
                index=i,
                range=r,
                primary_type=doc["primaryType"],
                expected_digest=eip712_signing_hash(doc),
            )
            for i, (r, doc) in enumerate(zip(ranges, documents))
        ]

        semaphore = asyncio.Semaphore(self.concurrency)

        async def worker(result: DocumentResult, document: Dict[str, Any]) -> None:
            async with semaphore:
                await self._process(blob, signer, signature, result, document)

        tasks = [
            asyncio.ensure_future(worker(result, doc))
            for result, doc in zip(results, documents)
        ]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        return results

    async def _process(
        self,
        blob: bytes,
        signer: str,
        signature: bytes,
        result: DocumentResult,
        document: Dict[str, Any],
    ) -> None:
        i = result.index
        guest_input = Input(claimed_signer=signer, signature=signature, blob=blob, range=result.range)
        logger.debug(f"Input #{i}: range={result.range}, signer={signer}")

        logger.info(f"Proving input #{i}")
        try:
            attestation = await asyncio.to_thread(self.prover.prove, guest_input)
            output = attestation.output
        except ProofError as e:
            result.error = str(e)
            logger.warning(f"❌ No attestation for document #{i}: {e}")
            return

        logger.info(f"Guest output #{i} -> signer: {output.signer}, digest: {output.digest_hex}")

        if output.digest != result.expected_digest:
            raise ConsistencyError(
                f"Document #{i}: guest digest {output.digest_hex} != "
                f"host digest 0x{result.expected_digest.hex()}"
            )
        if output.signer != signer:
            raise ConsistencyError(
                f"Document #{i}: guest signer {output.signer} != claimed signer {signer}"
            )

        try:
            await asyncio.to_thread(self.prover.verify, attestation, self.expected_image_id)
        except ProofError as e:
            result.error = str(e)
            logger.warning(f"❌ Receipt for document #{i} failed verification: {e}")
            return

        result.attestation = attestation

        if result.primary_type != PERMIT_TRANSFER_FROM or self.dispatcher is None:
            return

        try:
            result.dispatch_tx = await self.dispatcher.dispatch(document, output.signer, attestation)
        except DispatchError as e:
            result.dispatch_error = str(e)
            logger.error(f"❌ Dispatch failed for document #{i}: {e}")
