"""Async client and terminal front end for the Culi bookkeeping assistant."""

__version__ = "0.1.0"
