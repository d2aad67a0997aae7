"""Core domain: errors, status model, persistent models, runtime interface."""
