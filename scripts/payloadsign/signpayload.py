#!/usr/bin/env python3

import logging
import signal
import threading

import click

from payloadsign.defines import operation_type_name
from payloadsign.errors import PayloadError, ShortReadError, echo_error
from payloadsign.keys import PassphraseSource, load_private_key
from payloadsign.payload import CopyData, PayloadHeader, PayloadWriter
from payloadsign.stream import copy_n, remaining_size

log = logging.getLogger(__name__)


def resign_payload(reader, writer, key, cancel_signal=None):
    """
    Sign a (potentially unsigned) payload without making any other
    modifications to it.

    reader must be seekable. Every data-bearing operation is copied from
    reader to writer in manifest order. Returns (properties, metadata_size).
    """
    try:
        header = PayloadHeader.from_reader(reader)
    except (PayloadError, OSError) as e:
        e.add_note("Failed to parse payload header")
        raise

    source_size = header.blob_offset + remaining_size(reader)

    try:
        payload_writer = PayloadWriter(writer, header, key)
    except (PayloadError, OSError) as e:
        e.add_note("Failed to write payload header")
        raise

    while payload_writer.begin_next_operation():
        pi = payload_writer.partition_index()
        oi = payload_writer.operation_index()
        name = payload_writer.partition().partition_name
        operation = header.partitions[pi].operations[oi]
        kind = operation_type_name(payload_writer.operation().type)

        if not isinstance(operation, CopyData):
            log.debug("%s: %s operation #%d has no data", name, kind, oi)
            continue

        # Copy from the original payload.
        data_offset = operation.source_offset + header.blob_offset
        log.debug("%s: copying %s operation #%d, %d bytes from offset %d",
                  name, kind, oi, operation.length, data_offset)

        try:
            if data_offset > source_size:
                raise ShortReadError(
                    f"Offset {data_offset} is past the end of the payload "
                    f"({source_size} bytes)")
            reader.seek(data_offset)
        except OSError as e:
            e.add_note(f"Failed to seek original payload to {data_offset}")
            raise

        try:
            copy_n(reader, payload_writer, operation.length, cancel_signal)
        except (PayloadError, OSError) as e:
            e.add_note(
                f"Failed to copy from original payload: {name} "
                f"(partition #{pi} operation #{oi}, offset {data_offset})")
            raise

    try:
        return payload_writer.finish()
    except (PayloadError, OSError) as e:
        e.add_note("Failed to finalize payload")
        raise


def sign_payload(unsigned_payload, writer, key, cancel_signal=None):
    try:
        reader = open(unsigned_payload, 'rb')
    except OSError as e:
        e.add_note(f"Failed to open for reading: {unsigned_payload}")
        raise

    with reader:
        return resign_payload(reader, writer, key, cancel_signal)


def _install_cancel_handler(cancel_signal):
    """
    Set cancel_signal on Ctrl-C instead of interrupting mid-write.

    Returns a callable that puts the previous SIGINT handler back.
    """
    if threading.current_thread() is not threading.main_thread():
        return lambda: None

    def handler(signum, frame):
        click.echo("\nCancelling...", err=True)
        cancel_signal.set()

    previous = signal.signal(signal.SIGINT, handler)
    if previous is None:
        # Installed outside of Python; the closest match is the default.
        previous = signal.SIG_DFL

    def restore():
        signal.signal(signal.SIGINT, previous)

    return restore


@click.command()
@click.option('--input', 'input_file', required=True,
              type=click.Path(exists=True, file_okay=True, dir_okay=False),
              help='Path to old unsigned payload.bin')
@click.option('--output', 'output_file', required=True,
              type=click.Path(file_okay=True, dir_okay=False),
              help='Path to output signed payload.bin')
@click.option('--key', '-k', required=True,
              type=click.Path(exists=True, file_okay=True, dir_okay=False),
              help='Private key for signing the payload.bin')
@click.option('--pass-env-var', default=None, metavar='ENV_VAR',
              help='Environment variable containing the private key passphrase')
@click.option('--pass-file', default=None,
              type=click.Path(exists=True, file_okay=True, dir_okay=False),
              help='Text file containing the private key passphrase')
def main(input_file, output_file, key, pass_env_var, pass_file):
    """
    Re-sign an OTA payload.bin with a new private key.

    Operation data is copied byte for byte; only the header, manifest and
    signatures are regenerated.
    """
    passphrase_source = PassphraseSource.from_options(
        key, pass_env_var=pass_env_var, pass_file=pass_file)

    try:
        click.echo(f"Loading private key from: {key}")
        try:
            private_key = load_private_key(key, passphrase_source)
        except PayloadError as e:
            e.add_note(f"Failed to load key: {key}")
            raise

        click.echo("Signing the OTA payload, please wait...")
        cancel_signal = threading.Event()
        restore_handler = _install_cancel_handler(cancel_signal)
        try:
            with open(output_file, 'wb') as writer:
                properties, metadata_size = sign_payload(
                    input_file, writer, private_key, cancel_signal)
        finally:
            restore_handler()

        click.echo(f"Properties: {properties!r}")
        click.echo(f"Payload_metadata_size: {metadata_size}")

    except (PayloadError, OSError) as e:
        echo_error(e)
        raise click.Abort()


if __name__ == '__main__':
    main()
