#!/usr/bin/env python3

import os
from dataclasses import dataclass

import click
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from payloadsign.errors import KeyLoadError


@dataclass(frozen=True)
class PassphraseSource:
    """
    Where the passphrase of a private key comes from.

    kind is one of 'env', 'file' or 'prompt'. For 'env' the value is the
    environment variable name, for 'file' a path and for 'prompt' the text
    shown to the user.
    """
    kind: str
    value: str

    @classmethod
    def from_options(cls, key_file, pass_env_var=None, pass_file=None):
        if pass_env_var and pass_file:
            raise click.UsageError(
                "--pass-env-var and --pass-file are mutually exclusive")
        if pass_env_var:
            return cls('env', pass_env_var)
        if pass_file:
            return cls('file', str(pass_file))
        return cls('prompt', f"Enter passphrase for {str(key_file)!r}")

    def acquire(self, confirm=False):
        if self.kind == 'env':
            try:
                return os.environ[self.value]
            except KeyError:
                raise KeyLoadError(
                    f"Environment variable not set: {self.value}") from None
        if self.kind == 'file':
            try:
                with open(self.value, 'r') as f:
                    return f.read().rstrip('\r\n')
            except OSError as e:
                raise KeyLoadError(
                    f"Failed to read passphrase file: {self.value}") from e
        return click.prompt(self.value, hide_input=True,
                            confirmation_prompt=confirm)


def load_private_key(filename, passphrase_source=None):
    """
    Load an RSA private key from a PEM file.

    The passphrase is only acquired when the key turns out to be encrypted,
    so unencrypted keys never trigger a prompt.
    """
    try:
        with open(filename, 'rb') as f:
            key_data = f.read()
    except OSError as e:
        raise KeyLoadError(f"Failed to read key file: {filename}") from e

    try:
        private_key = serialization.load_pem_private_key(key_data, password=None)
    except TypeError:
        if passphrase_source is None:
            raise KeyLoadError(
                f"Private key is encrypted, but no passphrase was given: "
                f"{filename}") from None
        passphrase = passphrase_source.acquire()
        try:
            private_key = serialization.load_pem_private_key(
                key_data,
                password=passphrase.encode()
            )
        except (TypeError, ValueError) as e:
            raise KeyLoadError(
                f"Failed to decrypt private key: {filename}") from e
    except ValueError as e:
        raise KeyLoadError(f"Failed to decode private key: {filename}") from e

    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise KeyLoadError(
            f"Payloads can only be signed with RSA keys: {filename}")

    return private_key


def load_public_key(filename):
    try:
        with open(filename, 'rb') as f:
            public_key = serialization.load_pem_public_key(f.read())
    except OSError as e:
        raise KeyLoadError(f"Failed to read key file: {filename}") from e
    except ValueError as e:
        raise KeyLoadError(f"Failed to decode public key: {filename}") from e

    if not isinstance(public_key, rsa.RSAPublicKey):
        raise KeyLoadError(
            f"Payloads can only be verified with RSA keys: {filename}")

    return public_key
