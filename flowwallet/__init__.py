"""Custodial wallet service core for the Flow blockchain: accounts, jobs, chain events and WSGI handlers."""

__version__ = "0.1.0"