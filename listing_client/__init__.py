"""Listing client: connection manager, offline-aware sync engine and REST fallback."""
