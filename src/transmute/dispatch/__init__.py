"""Sync/async dispatch: envelopes, queue, worker and dispatcher."""

from .dispatcher import Dispatcher
from .envelope import JobEnvelope, QueueableMedia, RetryPolicy
from .queue import InMemoryJobQueue, JobQueue, ReservedJob
from .worker import TransformationWorker

__all__ = [
    "Dispatcher",
    "InMemoryJobQueue",
    "JobEnvelope",
    "JobQueue",
    "QueueableMedia",
    "ReservedJob",
    "RetryPolicy",
    "TransformationWorker",
]
