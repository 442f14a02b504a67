"""Tests for idempotency key derivation."""

import hashlib

from durastep import Job
from durastep.idempotency import compute_idempotency_key, idempotency_key_for


class InvoiceJob(Job):
    pass


class ReceiptJob(Job):
    pass


def test_key_is_sha256_of_class_and_canonical_payload():
    expected = hashlib.sha256(b'app.jobs:Charge\x00{"order":1}').hexdigest()
    assert compute_idempotency_key("app.jobs:Charge", {"order": 1}) == expected


def test_key_is_stable_for_equal_payloads():
    first = compute_idempotency_key("app:Job", {"a": 1, "b": [1, 2]})
    second = compute_idempotency_key("app:Job", {"b": [1, 2], "a": 1})
    assert first == second
    assert len(first) == 64


def test_key_depends_on_job_class_and_payload():
    assert idempotency_key_for(InvoiceJob(), 1) != idempotency_key_for(ReceiptJob(), 1)
    assert idempotency_key_for(InvoiceJob(), 1) != idempotency_key_for(InvoiceJob(), 2)
    # constructor arguments are not part of the key
    assert idempotency_key_for(InvoiceJob(1), "x") == idempotency_key_for(InvoiceJob(2), "x")
