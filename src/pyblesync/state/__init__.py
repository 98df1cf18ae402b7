"""State/store layer.

This package is the single source of truth for how local writes and inbound
sync messages are merged into the persisted calibration, telemetry log and
suggestion collections.
"""
