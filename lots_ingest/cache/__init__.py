"""In-process work tracking caches."""
from .work_status import WorkEntry, WorkStatus, WorkStatusCache

__all__ = ["WorkEntry", "WorkStatus", "WorkStatusCache"]
