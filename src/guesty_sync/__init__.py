"""Guesty listings sync: mirror a remote catalog into a local property store."""

__version__ = "0.1.0"
