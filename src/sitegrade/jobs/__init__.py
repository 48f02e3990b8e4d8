"""Job model, runner and scheduler."""

from sitegrade.jobs.models import Job, JobStatus, JobStatusView
from sitegrade.jobs.runner import JobRunner, RunPolicy
from sitegrade.jobs.scheduler import JobScheduler

__all__ = [
    "Job",
    "JobRunner",
    "JobScheduler",
    "JobStatus",
    "JobStatusView",
    "RunPolicy",
]
