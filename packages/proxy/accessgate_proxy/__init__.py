"""HTTP service for AccessGate."""
