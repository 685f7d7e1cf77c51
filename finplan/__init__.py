"""Monthly budget backend with recurring transaction replication."""

__version__ = "0.3.0"
