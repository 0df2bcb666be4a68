"""
Request dispatch module.

Components:
    - QueuedRequest: A pending call and the future its caller awaits
    - RequestQueue: FIFO queue of pending calls
    - Scheduler: Dispatch tick + window reset tick over the queue
"""

from .request_queue import QueuedRequest, RequestQueue
from .scheduler import DispatchFn, Scheduler

__all__ = [
    "DispatchFn",
    "QueuedRequest",
    "RequestQueue",
    "Scheduler",
]
