"""
rewards_batch.services -- Job audit, distribution runner and scheduler.
"""

from rewards_batch.services.distributor import RewardDistributor
from rewards_batch.services.job_audit import JobAuditService
from rewards_batch.services.scheduler import RewardScheduler

__all__ = [
    "JobAuditService",
    "RewardDistributor",
    "RewardScheduler",
]
