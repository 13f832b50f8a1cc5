from __future__ import annotations

import pytest

from consumer.messages import JobMessage, decode_job_message, encode_job_message
from detection.errors import DecodeError, ErrorKind


def test_decode_reads_both_fields():
    job = decode_job_message(b'{"job_id": "01JXYZ", "image_url": "https://img.example/a.png"}')

    assert job == JobMessage(job_id="01JXYZ", image_url="https://img.example/a.png")


def test_decode_accepts_text_and_ignores_extra_fields():
    job = decode_job_message('{"job_id": "a", "image_url": "u", "status": "queued"}')

    assert job.job_id == "a"


def test_redelivered_payload_decodes_to_equal_value():
    payload = encode_job_message(JobMessage("01J", "https://img.example/a.png"))

    assert decode_job_message(payload) == decode_job_message(payload)


@pytest.mark.parametrize(
    "payload",
    [
        b"",
        b"not json",
        b'"just a string"',
        b"null",
        b'{"job_id": "a"}',
        b'{"job_id": "", "image_url": "u"}',
        b'{"job_id": "a", "image_url": null}',
        b'{"job_id": ["a"], "image_url": "u"}',
        b"\xc3\x28",
        pytest.param(b"[" * 200000, id="deeply-nested"),
    ],
)
def test_decode_rejects_malformed_payloads(payload):
    with pytest.raises(DecodeError) as excinfo:
        decode_job_message(payload)

    assert excinfo.value.kind is ErrorKind.DECODE


def test_encode_uses_wire_field_names():
    assert encode_job_message(JobMessage("j1", "https://x/y.png")) == b'{"job_id":"j1","image_url":"https://x/y.png"}'
