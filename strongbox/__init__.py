"""Strongbox — gzip SQL backups with listing, deletion and retention."""

__version__ = "0.1.0"
