"""AATM NAS edition: torrent packaging console for a NAS."""

__version__ = "1.0.0"
