"""
DocBridge Test Suite.

This package contains:
- unit/: Unit tests (no external dependencies)
- integration/: Integration tests (database, runner, HTTP gateway)
"""
