#!/usr/bin/env python3

import enum
import struct

PAYLOAD_MAGIC = b'CrAU'
PAYLOAD_MAJOR_VERSION = 2

# magic, major version, manifest size, metadata signature size
PAYLOAD_HEADER_FMT = '> 4s Q Q I'
PAYLOAD_HEADER_SIZE = struct.calcsize(PAYLOAD_HEADER_FMT)

# Bytes moved per read/write when copying operation data
CHUNK_SIZE = 64 * 1024


class OperationType(enum.IntEnum):
    REPLACE = 0
    REPLACE_BZ = 1
    MOVE = 2
    BSDIFF = 3
    SOURCE_COPY = 4
    SOURCE_BSDIFF = 5
    ZERO = 6
    DISCARD = 7
    REPLACE_XZ = 8
    PUFFDIFF = 9
    BROTLI_BSDIFF = 10
    ZUCCHINI = 11
    LZ4DIFF_BSDIFF = 12
    LZ4DIFF_PUFFDIFF = 13


def operation_type_name(value):
    try:
        return OperationType(value).name
    except ValueError:
        return f"UNKNOWN({value})"
