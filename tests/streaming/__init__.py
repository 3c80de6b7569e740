"""Dispatcher, orchestrator and health monitor tests."""
