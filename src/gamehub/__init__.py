"""GameHub: single-host game server provisioning, lifecycle and streaming."""

__version__ = "0.1.0"
