from payloadsign.defines import CHUNK_SIZE
from payloadsign.errors import CancellationError, ShortReadError


def check_cancel(cancel_signal):
    if cancel_signal is not None and cancel_signal.is_set():
        raise CancellationError("Received cancel signal")


def remaining_size(reader):
    """Number of bytes between the current position and the end of reader."""
    position = reader.tell()
    end = reader.seek(0, 2)
    reader.seek(position)
    return max(end - position, 0)


def copy_n(reader, writer, size, cancel_signal=None, chunk_size=CHUNK_SIZE):
    """
    Copy exactly `size` bytes from reader to writer in bounded chunks.

    `cancel_signal` is anything with an ``is_set()`` method, usually a
    threading.Event. It is checked before every chunk, so cancellation takes
    effect within one chunk transfer. The writer is left with whatever was
    already copied when an error is raised.
    """
    remaining = size
    while remaining > 0:
        check_cancel(cancel_signal)

        data = reader.read(min(remaining, chunk_size))
        if not data:
            raise ShortReadError(
                f"Unexpected EOF: copied {size - remaining} of {size} bytes")

        writer.write(data)
        remaining -= len(data)

    return size
