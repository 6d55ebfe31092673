"""
Tests for the device data lifecycle engine.

This package contains tests for:
- Storage: database, ORM models and repositories
- Data lifecycle: orchestrator, hash-based archival,
  validation, types and configuration
"""
