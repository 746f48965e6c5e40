"""Notably tests.

Test organization:
- unit/: Fast unit tests against the in-memory and DuckDB adapters

Run tests with pytest:
    pytest tests/unit/ -v                     # Unit tests
    pytest tests/ -v -m "not integration"     # Skip file-backed DuckDB tests
"""
