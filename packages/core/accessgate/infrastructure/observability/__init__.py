"""Observability implementations."""
