"""AccessGate: access key validation and device authorization."""

__version__ = "0.1.0"
