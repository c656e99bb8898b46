"""Kernel selectors: read-only queries returning DTOs."""
