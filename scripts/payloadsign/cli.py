#!/usr/bin/env python3

import logging

import click
from . import genkeys
from . import signpayload
from . import verifypayload

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


@click.group()
@click.option('--verbose', '-v', count=True,
              help='Log progress (-v) or every operation (-vv) to stderr')
def cli(verbose):
    """payloadsign - Re-sign Android OTA payload.bin files"""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG if verbose > 1 else logging.INFO,
            format=LOG_FORMAT,
            datefmt="%Y-%m-%d %H:%M:%S",
        )

# Register all the commands
cli.add_command(signpayload.main, name="sign")
cli.add_command(genkeys.main, name="genkey")
cli.add_command(verifypayload.main, name="verify")

if __name__ == '__main__':
    cli()
