"""Core engine: configuration, credentials, and source management."""
