"""
ecomdb test suite.

This package contains:
- conftest.py: the seeded reference shop and clock fixtures
- unit/: Unit tests (in-memory, no external services)
- fixtures/: Seed files used by bootstrap and CLI tests
"""
