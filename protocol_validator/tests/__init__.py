"""Tests for protocol_validator."""
