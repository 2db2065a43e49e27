#!/usr/bin/env python3

"""
state_codec.py - On-disk framing for persisted save-state records

Layout (little endian):

    0   4  magic  b"NCSS"
    4   2  version
    6   2  flags  (bit 0 = payload is zlib compressed)
    8   4  length of the uncompressed payload
    12  4  CRC32 of the uncompressed payload
    16  .. payload

The payload is the raw FrameState exactly as the core produced it, so a
decoded record can be handed straight back to restore_state().
"""

import struct
import zlib

from errors import CorruptStateError

MAGIC = b"NCSS"
VERSION = 1
FLAG_COMPRESSED = 0x0001

_HEADER = struct.Struct("<4sHHII")
HEADER_SIZE = _HEADER.size


def encode_record(payload, compress=True, level=6):
    """Wrap a FrameState payload in a checksummed record."""
    payload = bytes(payload)
    crc = zlib.crc32(payload) & 0xFFFFFFFF
    flags = 0
    body = payload
    if compress:
        body = zlib.compress(payload, level)
        flags |= FLAG_COMPRESSED
    return _HEADER.pack(MAGIC, VERSION, flags, len(payload), crc) + body


def decode_record(record):
    """
    Unwrap a record produced by encode_record().

    Raises:
        CorruptStateError: bad magic, unknown version, truncated data,
            decompression failure or checksum mismatch
    """
    if record is None or len(record) < HEADER_SIZE:
        raise CorruptStateError("state record is truncated")

    magic, version, flags, length, crc = _HEADER.unpack_from(record, 0)
    if magic != MAGIC:
        raise CorruptStateError(f"bad state record magic {magic!r}")
    if version > VERSION:
        raise CorruptStateError(f"unsupported state record version {version}")

    body = bytes(record[HEADER_SIZE:])
    if flags & FLAG_COMPRESSED:
        try:
            body = zlib.decompress(body)
        except zlib.error as e:
            raise CorruptStateError(f"state record does not decompress: {e}") from e

    if len(body) != length:
        raise CorruptStateError(
            f"state record length mismatch ({len(body)} != {length})"
        )
    if zlib.crc32(body) & 0xFFFFFFFF != crc:
        raise CorruptStateError("state record checksum mismatch")
    return body
