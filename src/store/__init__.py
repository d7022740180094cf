"""Tier storage and versioning layer.

This package persists bronze, silver, and gold partitions as immutable
versions, plus per-batch rejection streams. It backs the SDK reads.
"""
