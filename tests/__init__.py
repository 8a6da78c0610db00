"""
entdb-memory test suite.

This package contains:
- unit/: Unit tests per module (query, comparators, relations, hooks, ...)
- integration/: Multi-collection flows through the public API
"""
