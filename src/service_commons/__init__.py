"""Shared configuration, error and logging helpers for HTTP services."""
