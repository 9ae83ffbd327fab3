"""Core infrastructure: database engine/session and logging configuration."""
