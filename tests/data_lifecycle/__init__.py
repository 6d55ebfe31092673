"""Tests for the data lifecycle orchestrator."""
