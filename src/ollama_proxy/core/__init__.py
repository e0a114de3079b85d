"""Core utilities shared across the proxy."""
