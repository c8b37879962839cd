#!/usr/bin/env python3

import os

import click
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from payloadsign.errors import PayloadError, echo_error
from payloadsign.keys import PassphraseSource


def generate_rsa_keypair(
    private_key_file="private_key.pem",
    public_key_file="public_key.pem",
    key_size=4096,
    password=None
):
    """
    Generate RSA keypair for payload signing and save to files
    """
    private_key = rsa.generate_private_key(public_exponent=65537,
                                           key_size=key_size)
    public_key = private_key.public_key()

    if password:
        encryption = serialization.BestAvailableEncryption(password.encode())
    else:
        encryption = serialization.NoEncryption()

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=encryption
    )

    public_pem = public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    )

    with open(private_key_file, 'wb') as f:
        f.write(private_pem)
    with open(public_key_file, 'wb') as f:
        f.write(public_pem)

    return private_key, public_key


@click.command()
@click.argument('filename')
@click.option('--bits', '-b', default=4096, type=click.IntRange(min=2048),
              help='RSA key size in bits (default: 4096)')
@click.option('--output-dir', '-o', default='.', help='Output directory for generated files')
@click.option('--pass-env-var', default=None, metavar='ENV_VAR',
              help='Environment variable containing the new key passphrase')
@click.option('--pass-file', default=None,
              type=click.Path(exists=True, file_okay=True, dir_okay=False),
              help='Text file containing the new key passphrase')
@click.option('--unencrypted', is_flag=True, default=False,
              help='Store the private key without a passphrase')
def main(filename, bits, output_dir, pass_env_var, pass_file, unencrypted):
    """
    Generate an RSA keypair for signing payloads.
    """
    if unencrypted and (pass_env_var or pass_file):
        raise click.UsageError(
            "--unencrypted cannot be combined with a passphrase option")

    os.makedirs(output_dir, exist_ok=True)

    private_key_file = os.path.join(output_dir, f"{filename}_private.pem")
    public_key_file = os.path.join(output_dir, f"{filename}_public.pem")

    password = None
    if not unencrypted:
        source = PassphraseSource.from_options(
            private_key_file, pass_env_var=pass_env_var, pass_file=pass_file)
        try:
            password = source.acquire(confirm=True)
        except PayloadError as e:
            echo_error(e)
            raise click.Abort()
        if not password:
            raise click.UsageError(
                "Empty passphrase; use --unencrypted to store the key "
                "without one")

    click.echo(f"Generating {bits} bit keypair: {filename}")
    generate_rsa_keypair(
        private_key_file=private_key_file,
        public_key_file=public_key_file,
        key_size=bits,
        password=password
    )

    click.echo(f"✓ Private key saved to: {private_key_file}")
    click.echo(f"✓ Public key saved to: {public_key_file}")


if __name__ == '__main__':
    main()
