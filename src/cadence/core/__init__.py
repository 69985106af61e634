"""Core primitives: errors, logging, settings, health endpoints and scheduling."""
