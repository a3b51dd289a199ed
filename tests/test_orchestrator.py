"""
Host orchestration: one receipt per document of a signed blob.
"""

import base64
import dataclasses

import pytest

from conftest import MAIL_DIGEST, PERMIT_DOCUMENT
from singlesign_canonical.contract import Input
from singlesign_canonical.errors import ConsistencyError, DispatchError, ParseError, ProofError, SchemaError
from singlesign_canonical.ranges import find_concatenated_json_ranges
from singlesign_canonical.signing import sign_personal_message
from singlesign_canonical.typed_data import eip712_signing_hash
from singlesign_tee.enclave import nsm_lib
from singlesign_tee.enclave.prover import GUEST_ABORTED
from singlesign_tee.enclave.tee_service import handle_request
from singlesign_tee.host.orchestrator import Orchestrator
from singlesign_tee.host.vsock_client import ProverEnclaveClient


async def _run(orchestrator, blob, signer, signature):
    return await orchestrator.prove_blob(blob, signer, signature)


class RecordingProver:
    """Wraps a prover and remembers which ranges it was asked to prove."""

    def __init__(self, inner):
        self.inner = inner
        self.proved = []

    def prove(self, guest_input):
        self.proved.append(guest_input.range)
        return self.inner.prove(guest_input)

    def verify(self, attestation, expected_image_id=None):
        return self.inner.verify(attestation, expected_image_id)


class SwappedRangeProver(RecordingProver):
    """Dishonest host component: proves a different document than requested."""

    def __init__(self, inner, ranges):
        super().__init__(inner)
        self.swap = {ranges[0]: ranges[1], ranges[1]: ranges[0]}

    def prove(self, guest_input):
        return self.inner.prove(dataclasses.replace(guest_input, range=self.swap[guest_input.range]))


class FailingProver(RecordingProver):
    """Aborts for one specific range."""

    def __init__(self, inner, fail_start):
        super().__init__(inner)
        self.fail_start = fail_start

    def prove(self, guest_input):
        if guest_input.range.start == self.fail_start:
            raise ProofError(GUEST_ABORTED)
        return super().prove(guest_input)


class FakeDispatcher:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def dispatch(self, document, signer, attestation):
        self.calls.append((document["primaryType"], signer, attestation.seal))
        if self.error:
            raise DispatchError(self.error)
        return "0x" + "ab" * 32


@pytest.mark.asyncio
async def test_two_documents_end_to_end(prover, two_doc_blob, blob_signature, signer_account):
    results = await _run(Orchestrator(prover), two_doc_blob, signer_account.address, blob_signature)

    assert [r.index for r in results] == [0, 1]
    assert all(r.ok for r in results)
    assert [r.primary_type for r in results] == ["Mail", "PermitTransferFrom"]
    assert results[0].output.digest == MAIL_DIGEST
    assert results[1].output.digest == eip712_signing_hash(PERMIT_DOCUMENT)
    assert {r.output.signer for r in results} == {signer_account.address}


@pytest.mark.asyncio
async def test_signer_is_normalized(prover, two_doc_blob, blob_signature, signer_account):
    results = await _run(Orchestrator(prover), two_doc_blob, signer_account.address.lower(), blob_signature)
    assert all(r.ok for r in results)


@pytest.mark.asyncio
async def test_wrong_signer_fails_every_document(prover, two_doc_blob, blob_signature, other_account):
    results = await _run(Orchestrator(prover), two_doc_blob, other_account.address, blob_signature)

    assert len(results) == 2
    assert not any(r.ok for r in results)
    assert {r.error for r in results} == {GUEST_ABORTED}
    assert all(r.attestation is None for r in results)


@pytest.mark.asyncio
async def test_tampered_blob_fails_every_document(prover, two_doc_blob, blob_signature, signer_account):
    tampered = two_doc_blob.replace(b'"nonce":7', b'"nonce":8')
    results = await _run(Orchestrator(prover), tampered, signer_account.address, blob_signature)
    assert not any(r.ok for r in results)


@pytest.mark.asyncio
async def test_parse_error_before_proving(prover, blob_signature, signer_account):
    spy = RecordingProver(prover)
    with pytest.raises(ParseError, match="Unclosed"):
        await _run(Orchestrator(spy), b'{"a":1}{"b":', signer_account.address, blob_signature)
    assert spy.proved == []


@pytest.mark.asyncio
async def test_schema_error_before_proving(prover, two_doc_blob, blob_signature, signer_account):
    spy = RecordingProver(prover)
    blob = two_doc_blob + b'{"not":"typed data"}'
    with pytest.raises(SchemaError):
        await _run(Orchestrator(spy), blob, signer_account.address, blob_signature)
    assert spy.proved == []


@pytest.mark.asyncio
async def test_digest_mismatch_aborts_run(prover, two_doc_blob, blob_signature, signer_account):
    swapped = SwappedRangeProver(prover, find_concatenated_json_ranges(two_doc_blob))
    with pytest.raises(ConsistencyError, match="guest digest"):
        await _run(Orchestrator(swapped), two_doc_blob, signer_account.address, blob_signature)


@pytest.mark.asyncio
async def test_single_document_failure_does_not_stop_others(prover, two_doc_blob, blob_signature, signer_account):
    second_start = two_doc_blob.index(b"\n") + 1
    results = await _run(
        Orchestrator(FailingProver(prover, second_start)),
        two_doc_blob,
        signer_account.address,
        blob_signature,
    )

    assert results[0].ok
    assert not results[1].ok
    assert results[1].error == GUEST_ABORTED


@pytest.mark.asyncio
async def test_malformed_enclave_response_fails_only_its_document(
    monkeypatch, tmp_path, prover, two_doc_blob, blob_signature, signer_account
):
    monkeypatch.setattr(nsm_lib, "NSM_DEVICE", str(tmp_path / "nsm"))
    client = ProverEnclaveClient(enclave_cid=16, allow_mock_attestation=True)
    second_start = two_doc_blob.index(b"\n") + 1

    def answer(request):
        response = handle_request(request, prover)
        if request["command"] == "prove":
            guest_input = Input.from_cbor(base64.b64decode(request["input_b64"]))
            if guest_input.range.start == second_start:
                response["receipt"] = "not a receipt"
        return response

    monkeypatch.setattr(client, "_send_request", answer)
    results = await _run(Orchestrator(client), two_doc_blob, signer_account.address, blob_signature)

    assert results[0].ok
    assert not results[1].ok
    assert "Malformed receipt" in results[1].error


@pytest.mark.asyncio
async def test_untrusted_image_id_rejected(prover, two_doc_blob, blob_signature, signer_account):
    orchestrator = Orchestrator(prover, expected_image_id="00" * 32)
    results = await _run(orchestrator, two_doc_blob, signer_account.address, blob_signature)

    assert not any(r.ok for r in results)
    assert all("Image ID mismatch" in r.error for r in results)


@pytest.mark.asyncio
async def test_permit_documents_are_dispatched(prover, two_doc_blob, blob_signature, signer_account):
    dispatcher = FakeDispatcher()
    results = await _run(Orchestrator(prover, dispatcher=dispatcher), two_doc_blob, signer_account.address, blob_signature)

    assert len(dispatcher.calls) == 1
    primary, signer, seal = dispatcher.calls[0]
    assert primary == "PermitTransferFrom"
    assert signer == signer_account.address
    assert seal == results[1].attestation.seal
    assert results[0].dispatch_tx is None
    assert results[1].dispatch_tx == "0x" + "ab" * 32


@pytest.mark.asyncio
async def test_dispatch_failure_keeps_receipt(prover, two_doc_blob, blob_signature, signer_account):
    dispatcher = FakeDispatcher(error="permitTransferFrom reverted")
    results = await _run(Orchestrator(prover, dispatcher=dispatcher), two_doc_blob, signer_account.address, blob_signature)

    assert results[1].ok
    assert results[1].dispatch_tx is None
    assert results[1].dispatch_error == "permitTransferFrom reverted"


@pytest.mark.asyncio
async def test_concurrent_proving_keeps_order(prover, two_doc_blob, blob_signature, signer_account):
    blob = two_doc_blob + b"\n" + two_doc_blob
    signature = sign_personal_message(blob, signer_account.key)
    results = await _run(Orchestrator(prover, concurrency=2), blob, signer_account.address, signature)

    assert [r.index for r in results] == [0, 1, 2, 3]
    assert [r.primary_type for r in results] == ["Mail", "PermitTransferFrom"] * 2
    assert all(r.ok for r in results)
    assert results[2].output.digest == MAIL_DIGEST


def test_invalid_concurrency(prover):
    with pytest.raises(ValueError):
        Orchestrator(prover, concurrency=0)


@pytest.mark.asyncio
async def test_result_to_dict(prover, two_doc_blob, blob_signature, signer_account):
    results = await _run(Orchestrator(prover), two_doc_blob, signer_account.address, blob_signature)
    data = results[0].to_dict()

    assert data["ok"] is True
    assert data["index"] == 0
    assert data["range"] == [results[0].range.start, results[0].range.end]
    assert data["digest"] == "0x" + MAIL_DIGEST.hex()
    assert data["signer"] == signer_account.address
    assert data["receipt"]["version"] == 1
