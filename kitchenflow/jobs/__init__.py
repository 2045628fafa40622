"""
Background Jobs Module

Handles scheduled tasks for:
- Deactivating expired inventory batches
"""

from kitchenflow.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler, get_job_status
from kitchenflow.jobs.batch_expiry import expire_batches

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "get_job_status",
    "expire_batches",
]
