"""Background jobs: queue drains run by an arq worker."""

from mya.jobs.worker import WorkerSettings, process_user_queue

__all__ = ["WorkerSettings", "process_user_queue"]
