"""Re-sign Android OTA update payloads with a new key."""

__version__ = "0.1.0"
