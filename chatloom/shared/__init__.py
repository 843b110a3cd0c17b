"""Shared models and helpers used by the engine and adapters."""
