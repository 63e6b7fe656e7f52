"""Shared constants for the cmon agent.

Centralized constants to avoid duplication and ensure consistency across modules.
"""

from __future__ import annotations

# Request header carrying base64-encoded JSON collection options.
CMON_OPTS_HEADER = "x-joyent-cmon-opts"

# Body returned for metrics requests naming an unknown guest.
CONTAINER_NOT_FOUND = "container not found"

# Prometheus text exposition content type.
EXPOSITION_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"

# Label attached to every guest-scoped sample.
VM_UUID_LABEL = "vm_uuid"

# Zone id of the global zone; never treated as a guest.
GLOBAL_ZONE_ID = 0

# kstat load averages are fixed-point with 8 fractional bits.
FSCALE = 256

NANOSEC = 1_000_000_000
