"""orgbase: tenant resolution, registry and per-tenant connection cache."""

__version__ = "0.1.0"
