"""
Reading and writing of update_engine payloads (major version 2).

Layout of a payload:

    magic | major version | manifest size | metadata signature size
    manifest (DeltaArchiveManifest protobuf)
    metadata signature (Signatures protobuf)
    blob region (operation data, then the payload Signatures blob)

Operation data offsets in the manifest are relative to the blob region.
"""

import base64
import logging
import struct
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa, utils
from google.protobuf.message import DecodeError

from payloadsign import update_metadata
from payloadsign.defines import (
    PAYLOAD_HEADER_FMT,
    PAYLOAD_HEADER_SIZE,
    PAYLOAD_MAGIC,
    PAYLOAD_MAJOR_VERSION,
)
from payloadsign.errors import (
    FormatError,
    MissingOffsetError,
    SigningError,
    VerificationError,
    WriterStateError,
)
from payloadsign.stream import remaining_size

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CopyData:
    """Operation whose data is copied verbatim from the blob region."""
    source_offset: int
    length: int


@dataclass(frozen=True)
class ZeroOrDiscard:
    """Operation without any data in the blob region."""


Operation = Union[CopyData, ZeroOrDiscard]


@dataclass(frozen=True)
class Partition:
    name: str
    operations: Tuple[Operation, ...]


def operation_from_manifest(operation, partition_index, operation_index):
    if not operation.HasField('data_length'):
        return ZeroOrDiscard()
    if not operation.HasField('data_offset'):
        raise MissingOffsetError(
            f"Missing data_offset in partition #{partition_index} "
            f"operation #{operation_index}")
    return CopyData(operation.data_offset, operation.data_length)


def partitions_from_manifest(manifest):
    partitions = []
    for pi, partition in enumerate(manifest.partitions):
        operations = tuple(
            operation_from_manifest(operation, pi, oi)
            for oi, operation in enumerate(partition.operations)
        )
        partitions.append(Partition(partition.partition_name, operations))
    return tuple(partitions)


def sha256_hash(data):
    digest = hashes.Hash(hashes.SHA256())
    digest.update(data)
    return digest.finalize()


def _read_exact(reader, size, what):
    # Sizes come from the header; never ask read() for more than is left.
    available = remaining_size(reader)
    if size > available:
        raise FormatError(
            f"Truncated {what}: expected {size} bytes, got {available}")
    data = reader.read(size)
    if len(data) != size:
        raise FormatError(
            f"Truncated {what}: expected {size} bytes, got {len(data)}")
    return data


@dataclass(frozen=True)
class PayloadHeader:
    version: int
    manifest: object
    manifest_size: int
    metadata_signature: bytes
    blob_offset: int
    partitions: Tuple[Partition, ...]

    @property
    def metadata_signature_size(self):
        return len(self.metadata_signature)

    @classmethod
    def from_reader(cls, reader):
        """Parse the header and manifest, leaving reader at the blob region."""
        raw = _read_exact(reader, PAYLOAD_HEADER_SIZE, 'payload header')
        magic, version, manifest_size, metadata_signature_size = \
            struct.unpack(PAYLOAD_HEADER_FMT, raw)

        if magic != PAYLOAD_MAGIC:
            raise FormatError(f"Invalid payload magic: {magic!r}")
        if version != PAYLOAD_MAJOR_VERSION:
            raise FormatError(f"Unsupported payload version: {version}")

        manifest_raw = _read_exact(reader, manifest_size, 'payload manifest')
        manifest = update_metadata.DeltaArchiveManifest()
        try:
            manifest.ParseFromString(manifest_raw)
        except DecodeError as e:
            raise FormatError("Failed to decode payload manifest") from e

        metadata_signature = _read_exact(
            reader, metadata_signature_size, 'metadata signature')

        return cls(
            version=version,
            manifest=manifest,
            manifest_size=manifest_size,
            metadata_signature=metadata_signature,
            blob_offset=PAYLOAD_HEADER_SIZE + manifest_size
            + metadata_signature_size,
            partitions=partitions_from_manifest(manifest),
        )


def signature_size(key):
    """Size of a serialized Signatures message holding one signature."""
    signatures = update_metadata.Signatures()
    length = (key.key_size + 7) // 8
    signatures.signatures.add(data=bytes(length),
                              unpadded_signature_size=length)
    return signatures.ByteSize()


def sign_digest(key, digest):
    """Sign a SHA-256 digest and wrap it in a serialized Signatures message."""
    try:
        data = key.sign(digest, padding.PKCS1v15(),
                        utils.Prehashed(hashes.SHA256()))
    except (TypeError, ValueError) as e:
        raise SigningError("Failed to sign digest") from e

    signatures = update_metadata.Signatures()
    signatures.signatures.add(data=data, unpadded_signature_size=len(data))
    return signatures.SerializeToString(deterministic=True)


def verify_digest(public_key, digest, signatures_raw, what):
    """Check that at least one signature in signatures_raw matches digest."""
    signatures = update_metadata.Signatures()
    try:
        signatures.ParseFromString(signatures_raw)
    except DecodeError as e:
        raise FormatError(f"Failed to decode {what}") from e

    if not signatures.signatures:
        raise VerificationError(f"No signatures in {what}")

    for signature in signatures.signatures:
        data = signature.data
        if signature.HasField('unpadded_signature_size'):
            data = data[:signature.unpadded_signature_size]
        try:
            public_key.verify(data, digest, padding.PKCS1v15(),
                              utils.Prehashed(hashes.SHA256()))
            return
        except InvalidSignature:
            continue

    raise VerificationError(f"No signature in {what} matches the key")


def payload_properties(file_hash, file_size, metadata_hash, metadata_size):
    """Format the payload properties consumed by update_engine clients."""
    return (
        f"FILE_HASH={base64.b64encode(file_hash).decode()}\n"
        f"FILE_SIZE={file_size}\n"
        f"METADATA_HASH={base64.b64encode(metadata_hash).decode()}\n"
        f"METADATA_SIZE={metadata_size}\n"
    )


class PayloadWriter:
    """
    Write a signed payload equivalent to `header`, one operation at a time.

    The header, manifest and metadata signature are written on construction.
    Callers then loop over begin_next_operation() and write() exactly the
    data length of every data-bearing operation, in manifest order. Data
    offsets are reassigned so the blobs are contiguous. finish() appends the
    payload signature.
    """

    def __init__(self, writer, header, key):
        if not isinstance(key, rsa.RSAPrivateKey):
            raise SigningError(
                f"Unsupported signing key type: {type(key).__name__}")

        self._writer = writer
        self._key = key

        manifest = update_metadata.DeltaArchiveManifest()
        manifest.CopyFrom(header.manifest)

        blob_size = 0
        for partition in manifest.partitions:
            for operation in partition.operations:
                if operation.HasField('data_length'):
                    operation.data_offset = blob_size
                    blob_size += operation.data_length

        self._signature_size = signature_size(key)
        manifest.signatures_offset = blob_size
        manifest.signatures_size = self._signature_size
        self.manifest = manifest
        self._blob_size = blob_size

        manifest_raw = manifest.SerializeToString(deterministic=True)
        header_raw = struct.pack(
            PAYLOAD_HEADER_FMT,
            PAYLOAD_MAGIC,
            PAYLOAD_MAJOR_VERSION,
            len(manifest_raw),
            self._signature_size,
        )
        metadata_signature = self._sign(sha256_hash(header_raw + manifest_raw))
        metadata_raw = header_raw + manifest_raw + metadata_signature

        self.metadata_size = len(metadata_raw)
        self._metadata_hash = sha256_hash(metadata_raw)
        self._hasher = hashes.Hash(hashes.SHA256())
        self._write(metadata_raw)

        log.debug("Wrote payload metadata: %d bytes, blob size %d",
                  self.metadata_size, blob_size)

        self._partition_index = None
        self._operation_index = None
        self._remaining = 0
        self._done = False
        self._finished = False

    def _sign(self, digest):
        signature = sign_digest(self._key, digest)
        if len(signature) != self._signature_size:
            raise SigningError(
                f"Expected {self._signature_size} byte signature, "
                f"but got {len(signature)} bytes")
        return signature

    def _write(self, data):
        self._writer.write(data)
        self._hasher.update(data)

    def begin_next_operation(self):
        """Advance to the next operation; False once none are left."""
        if self._done:
            return False

        if self._remaining:
            raise WriterStateError(
                f"Partition #{self._partition_index} operation "
                f"#{self._operation_index} still expects "
                f"{self._remaining} bytes")

        if self._partition_index is None:
            pi, oi = 0, 0
        else:
            pi, oi = self._partition_index, self._operation_index + 1

        partitions = self.manifest.partitions
        while pi < len(partitions) and oi >= len(partitions[pi].operations):
            pi += 1
            oi = 0

        if pi >= len(partitions):
            self._partition_index = None
            self._operation_index = None
            self._done = True
            return False

        self._partition_index = pi
        self._operation_index = oi
        operation = partitions[pi].operations[oi]
        self._remaining = operation.data_length \
            if operation.HasField('data_length') else 0
        return True

    def partition_index(self) -> Optional[int]:
        return self._partition_index

    def operation_index(self) -> Optional[int]:
        return self._operation_index

    def partition(self):
        if self._partition_index is None:
            return None
        return self.manifest.partitions[self._partition_index]

    def operation(self):
        partition = self.partition()
        if partition is None:
            return None
        return partition.operations[self._operation_index]

    def write(self, data):
        if self._partition_index is None:
            raise WriterStateError("No operation is in progress")
        if len(data) > self._remaining:
            raise WriterStateError(
                f"Partition #{self._partition_index} operation "
                f"#{self._operation_index} expects only {self._remaining} "
                f"more bytes, got {len(data)}")

        self._write(data)
        self._remaining -= len(data)
        return len(data)

    def finish(self):
        """Append the payload signature; returns (properties, metadata size)."""
        if self._finished:
            raise WriterStateError("Payload was already finalized")
        if not self._done:
            raise WriterStateError(
                "Cannot finalize payload before all operations are written")

        file_hasher = self._hasher.copy()
        signature = self._sign(self._hasher.finalize())
        self._writer.write(signature)
        file_hasher.update(signature)
        self._finished = True

        file_size = self.metadata_size + self._blob_size + len(signature)
        properties = payload_properties(
            file_hasher.finalize(),
            file_size,
            self._metadata_hash,
            self.metadata_size,
        )
        log.info("Signed payload: %d bytes, metadata size %d",
                 file_size, self.metadata_size)

        return properties, self.metadata_size
