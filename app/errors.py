from __future__ import annotations


class ConfigurationError(RuntimeError):
    """Raised at startup when a required setting is missing or unusable."""
