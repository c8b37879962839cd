from __future__ import annotations

import struct
from pathlib import Path

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from payloadsign import update_metadata
from payloadsign.defines import (
    PAYLOAD_HEADER_FMT,
    PAYLOAD_MAGIC,
    PAYLOAD_MAJOR_VERSION,
    OperationType,
)

PASSPHRASE = "correct horse"


@pytest.fixture
def passphrase() -> str:
    return PASSPHRASE


@pytest.fixture(scope="session")
def signing_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def other_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def key_files(tmp_path: Path, signing_key: rsa.RSAPrivateKey) -> dict[str, Path]:
    plain = tmp_path / "plain_private.pem"
    plain.write_bytes(
        signing_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    encrypted = tmp_path / "encrypted_private.pem"
    encrypted.write_bytes(
        signing_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.BestAvailableEncryption(PASSPHRASE.encode()),
        )
    )
    public = tmp_path / "public.pem"
    public.write_bytes(
        signing_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    )
    return {"plain": plain, "encrypted": encrypted, "public": public}


def _build_payload(
    partitions: list[tuple[str, list[dict]]],
    blob: bytes,
    *,
    metadata_signature: bytes = b"",
    extra_manifest: bytes = b"",
    magic: bytes = PAYLOAD_MAGIC,
    version: int = PAYLOAD_MAJOR_VERSION,
    manifest_fields: dict | None = None,
) -> bytes:
    manifest = update_metadata.DeltaArchiveManifest(
        block_size=4096, minor_version=0, **(manifest_fields or {})
    )
    for name, operations in partitions:
        partition = manifest.partitions.add(partition_name=name)
        for operation in operations:
            partition.operations.add(**operation)
    manifest_raw = manifest.SerializeToString() + extra_manifest
    header = struct.pack(
        PAYLOAD_HEADER_FMT, magic, version, len(manifest_raw), len(metadata_signature)
    )
    return header + manifest_raw + metadata_signature + blob


@pytest.fixture
def make_payload():
    return _build_payload


def replace_op(offset: int | None, length: int) -> dict:
    op = {"type": int(OperationType.REPLACE), "data_length": length}
    if offset is not None:
        op["data_offset"] = offset
    return op


def zero_op() -> dict:
    return {"type": int(OperationType.ZERO), "dst_extents": [update_metadata.Extent(start_block=0, num_blocks=1)]}


@pytest.fixture
def ops():
    class _Ops:
        replace = staticmethod(replace_op)
        zero = staticmethod(zero_op)

    return _Ops
