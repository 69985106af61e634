"""Worker execution: run records and the subprocess invocation."""

from cadence.execution.models import RunOutcome, RunRecord
from cadence.execution.worker import OutputTail, WorkerInvocation

__all__ = ["OutputTail", "RunOutcome", "RunRecord", "WorkerInvocation"]
