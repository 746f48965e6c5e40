"""Unit tests for Notably.

Unit tests run in-process against in-memory backing stores.

Run: pytest tests/unit/ -v
"""
