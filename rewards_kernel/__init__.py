"""
rewards_kernel -- Persistence kernel for the subscription reward engine.

Owns the ledger (wallets and their append-only transactions), the
enrollment store (plans and customer enrollments), and the shared
infrastructure every outer package builds on: declarative base, engine and
session scope, injectable clock, structured logging, typed exceptions.

Architecture:
    rewards_kernel is the lowest layer.  Nothing in it imports from
    rewards_batch or rewards_config.
"""
