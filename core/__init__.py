"""
Core Module Package.

Infrastructure shared by every other package:
- clock: time abstraction for TTLs and usage periods
- exceptions: caller-facing error taxonomy
- config: environment-driven settings
- logging_setup: root logger configuration
"""
