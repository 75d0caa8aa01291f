"""Shared utilities: logging, errors, configuration and the event bus."""
