"""hasync - PIN pairing and realtime channel for home-automation companion clients."""

__version__ = "0.1.0"
