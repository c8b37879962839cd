"""Error types raised while reading, signing and verifying payloads."""

import click


class PayloadError(Exception):
    """Base class for all payloadsign failures."""


class FormatError(PayloadError):
    """The stream is not a valid payload header/manifest."""


class MissingOffsetError(FormatError):
    """An operation declares a data length without a data offset."""


class ShortReadError(PayloadError, OSError):
    """The source ended before the requested number of bytes was read."""


class KeyLoadError(PayloadError):
    """The private or public key could not be loaded."""


class CancellationError(PayloadError):
    """The cancellation signal was set while copying."""


class SigningError(PayloadError):
    """A signature could not be computed or attached."""


class WriterStateError(PayloadError):
    """The payload writer was driven outside of its traversal contract."""


class VerificationError(PayloadError):
    """A payload signature does not match the given public key."""


def describe(error):
    """Return the human readable context chain of an exception.

    Notes added while the error propagated are listed outermost first,
    followed by the error itself and its chain of causes.
    """
    lines = []
    current = error
    while current is not None:
        notes = getattr(current, '__notes__', None) or []
        lines.extend(reversed(notes))
        lines.append(str(current) or type(current).__name__)
        current = current.__cause__
    return lines


def echo_error(error):
    """Print the context chain of error to stderr."""
    lines = describe(error)
    click.echo(f"❌ Error: {lines[0]}", err=True)
    for line in lines[1:]:
        click.echo(f"    Caused by: {line}", err=True)
