from __future__ import annotations


class AlertEngineError(Exception):
    """Base class for failures raised inside the alert engine."""


class NotFoundError(AlertEngineError):
    """The requested instrument or record does not exist anywhere in the fallback chain."""


class UpstreamError(AlertEngineError):
    """A market-data endpoint failed, timed out or returned an unusable payload."""


class StoreError(AlertEngineError):
    """A read or write against one of the backing stores failed."""


class AlertConfigError(AlertEngineError):
    """An alert cannot be evaluated as configured (unknown kind, missing parameter)."""


class NotificationError(AlertEngineError):
    """The notification sender rejected or failed to deliver a request."""
