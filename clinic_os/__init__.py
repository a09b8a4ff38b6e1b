"""clinic-os: multi-tenant clinic scheduling backend."""

__version__ = "0.1.0"
