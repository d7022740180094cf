"""Batch ingestion pipeline.

This package reads raw batches, tracks their lifecycle, and drives them
through validation, cleansing, and the tier writes.
"""
