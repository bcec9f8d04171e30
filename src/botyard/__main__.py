"""CLI entrypoint for running botyard as a module."""

from botyard.cli import cli
from botyard.logging import setup_logging

if __name__ == "__main__":
    setup_logging()
    cli()
