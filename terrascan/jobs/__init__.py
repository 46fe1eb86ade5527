"""Analysis job lifecycle.

- JobService: submit / start / complete / fail / cancel jobs
- CancellationToken: cooperative cancellation checks for running jobs
- LocalJobRunner: runs jobs on a local thread pool
"""

from terrascan.jobs.service import (
    CancellationToken,
    JobCancelledError,
    JobError,
    JobService,
)

__all__ = ["CancellationToken", "JobCancelledError", "JobError", "JobService"]
