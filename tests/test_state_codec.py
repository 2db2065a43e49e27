import struct

import pytest

from errors import CorruptStateError
from state_codec import HEADER_SIZE, MAGIC, decode_record, encode_record


def test_compressed_record_round_trips():
    payload = bytes(range(256)) * 8
    record = encode_record(payload)
    assert record[:4] == MAGIC
    assert len(record) < len(payload)
    assert decode_record(record) == payload


def test_uncompressed_record_keeps_payload_verbatim():
    record = encode_record(b"raw state", compress=False)
    assert record[HEADER_SIZE:] == b"raw state"
    assert decode_record(record) == b"raw state"


def test_truncated_record():
    with pytest.raises(CorruptStateError):
        decode_record(b"NCSS")
    with pytest.raises(CorruptStateError):
        decode_record(None)


def test_bad_magic():
    record = bytearray(encode_record(b"state"))
    record[:4] = b"XXXX"
    with pytest.raises(CorruptStateError):
        decode_record(bytes(record))


def test_flipped_payload_byte_fails_checksum():
    record = bytearray(encode_record(b"state bytes", compress=False))
    record[-1] ^= 0x01
    with pytest.raises(CorruptStateError):
        decode_record(bytes(record))


def test_newer_version_is_rejected():
    record = bytearray(encode_record(b"state"))
    struct.pack_into("<H", record, 4, 99)
    with pytest.raises(CorruptStateError):
        decode_record(bytes(record))


def test_garbled_compressed_body():
    record = encode_record(b"state" * 100)
    with pytest.raises(CorruptStateError):
        decode_record(record[:HEADER_SIZE] + b"\x00\x01\x02")
