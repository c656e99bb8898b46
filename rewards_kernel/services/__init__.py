"""Kernel services: write paths for the ledger and enrollment stores."""
