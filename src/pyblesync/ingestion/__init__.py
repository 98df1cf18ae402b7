"""Ingestion layer: wire payloads in, store messages out.

This package translates inbound MQTT publishes into tagged messages for the
merge store, and formats local writes for the wire.
"""
