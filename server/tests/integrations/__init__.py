"""
Integration test modules

Tests for outbound integrations such as the outbox webhook notifier.
"""
