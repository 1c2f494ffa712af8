"""Rafiq citizen portal: offline-first service catalog and assistant."""

__version__ = "1.0.0"
