#!/usr/bin/env python3

import logging

import click
from cryptography.hazmat.primitives import hashes

from payloadsign.defines import CHUNK_SIZE, PAYLOAD_HEADER_SIZE
from payloadsign.errors import (
    FormatError,
    PayloadError,
    VerificationError,
    echo_error,
)
from payloadsign.keys import load_public_key
from payloadsign.payload import (
    PayloadHeader,
    payload_properties,
    verify_digest,
)

log = logging.getLogger(__name__)


def _hash_range(reader, offset, size):
    digest = hashes.Hash(hashes.SHA256())
    reader.seek(offset)
    remaining = size
    while remaining > 0:
        data = reader.read(min(remaining, CHUNK_SIZE))
        if not data:
            raise FormatError(f"Unexpected EOF while hashing payload at "
                              f"offset {offset + size - remaining}")
        digest.update(data)
        remaining -= len(data)
    return digest.finalize()


def verify_payload(reader, public_key):
    """
    Check the metadata and payload signatures of a signed payload.

    Returns the properties string of the payload.
    """
    header = PayloadHeader.from_reader(reader)
    manifest = header.manifest

    if not header.metadata_signature:
        raise VerificationError("Payload has no metadata signature")
    if not manifest.HasField('signatures_offset') \
            or not manifest.HasField('signatures_size'):
        raise VerificationError("Payload has no payload signature")

    file_size = reader.seek(0, 2)
    signatures_offset = header.blob_offset + manifest.signatures_offset
    if signatures_offset + manifest.signatures_size > file_size:
        raise FormatError(
            f"Truncated payload signature: expected {manifest.signatures_size} "
            f"bytes at offset {signatures_offset}, payload is {file_size} bytes")

    metadata_digest = _hash_range(
        reader, 0, PAYLOAD_HEADER_SIZE + header.manifest_size)
    verify_digest(public_key, metadata_digest, header.metadata_signature,
                  'metadata signature')
    log.debug("Metadata signature verified")

    payload_digest = _hash_range(reader, 0, signatures_offset)

    reader.seek(signatures_offset)
    signatures_raw = reader.read(manifest.signatures_size)
    if len(signatures_raw) != manifest.signatures_size:
        raise FormatError("Truncated payload signature")
    verify_digest(public_key, payload_digest, signatures_raw,
                  'payload signature')
    log.debug("Payload signature verified")

    return payload_properties(
        _hash_range(reader, 0, file_size),
        file_size,
        _hash_range(reader, 0, header.blob_offset),
        header.blob_offset,
    )


@click.command()
@click.option('--input', 'input_file', required=True,
              type=click.Path(exists=True, file_okay=True, dir_okay=False),
              help='Path to signed payload.bin')
@click.option('--key', '-k', required=True,
              type=click.Path(exists=True, file_okay=True, dir_okay=False),
              help='Public key (PEM) the payload should be signed with')
def main(input_file, key):
    """
    Verify the signatures of a payload.bin against a public key.
    """
    try:
        click.echo(f"Loading public key from: {key}")
        public_key = load_public_key(key)

        click.echo(f"Verifying payload: {input_file}")
        with open(input_file, 'rb') as reader:
            properties = verify_payload(reader, public_key)

        click.echo("✓ Payload signatures verified")
        click.echo(f"Properties: {properties!r}")

    except (PayloadError, OSError) as e:
        echo_error(e)
        raise click.Abort()


if __name__ == '__main__':
    main()
