"""
rewards_batch -- The subscription reward distribution job.

Claims one execution slot per calendar day, walks every active enrollment,
credits the day's reward into the customer's wallet with an immutable
ledger row, and records the outcome in the job audit table.  An
in-process cron scheduler triggers the same runner entry point used by
manual invocations.

Architecture:
    rewards_batch/ is a top-level package.  Nothing in rewards_kernel
    imports from rewards_batch.

Invariants:
    - At most one claimed run per (job name, execution date).
    - At most one reward per enrollment per execution date.
    - Every exit path leaves the day's audit row in a terminal status
      (SUCCESS, SKIPPED, FAILED or CANCELLED), except process death.
    - All timestamps come from the injected Clock.
"""
