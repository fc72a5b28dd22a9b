"""
agent-memory test suite.

- Unit tests for individual components
- Integration tests for indexing, search and maintenance flows
"""
