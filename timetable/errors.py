"""Error hierarchy for the schedule check pipeline.

Per-class errors (FetchError, MappingError) are recorded against the class and
never stop a batch. MappingFetchError is batch-fatal: without the mapping no
class can be resolved to a schedule URL.
"""

from typing import Optional


class MonitorError(Exception):
    """Base exception for all schedule monitor errors."""

    pass


class FetchError(MonitorError):
    """Schedule page unreachable or answered with a non-2xx status."""

    def __init__(self, message: str, url: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code

    @property
    def is_transient(self) -> bool:
        """Network failures and 5xx answers may succeed on retry; 4xx will not."""
        return self.status_code is None or self.status_code >= 500


class MappingError(MonitorError):
    """Class has no entry in the class to slug mapping."""

    def __init__(self, class_name: str):
        super().__init__(f"No slug found for {class_name}")
        self.class_name = class_name


class MappingFetchError(MonitorError):
    """The class to slug mapping document itself could not be loaded."""

    pass
