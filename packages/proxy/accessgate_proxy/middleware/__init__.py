"""Starlette middleware."""
