"""
rewards_batch.models -- ORM models owned by the distribution job.

Architecture: rewards_batch/models.  Imports from rewards_kernel.db.base only.
"""

from rewards_batch.models.job_execution import JobExecutionModel

__all__ = [
    "JobExecutionModel",
]
