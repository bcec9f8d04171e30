"""Botyard - run many config-driven Discord bots from one supervisor."""

__version__ = "0.1.0"
