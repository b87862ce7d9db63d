"""Broadcast hub: canonical listing storage with websocket fan-out and a REST surface."""
