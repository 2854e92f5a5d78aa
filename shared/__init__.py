"""Shared code for the ScanClock client and reference server."""

__VERSION__ = "1.0.0"
__API_VERSION__ = "v1"
