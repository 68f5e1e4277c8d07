"""Configuration for AccessGate."""

from accessgate.infrastructure.config.settings import AccessGateSettings

__all__ = ["AccessGateSettings"]
