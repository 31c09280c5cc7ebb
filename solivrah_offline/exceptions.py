"""
Custom exceptions for the offline sync layer.

Every component raises these so callers (and the sync coordinator)
can tell transient failures apart from rejections and corruption.
"""


class OfflineSyncError(Exception):
    """Base exception for all offline sync errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class TransientNetworkError(OfflineSyncError):
    """Raised when the network is unreachable or a request times out.

    The operation that hit it stays queued and is retried on the next drain.
    """

    def __init__(self, url: str, cause: Exception | None = None):
        details = {"url": url}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Network unavailable for {url}", details)
        self.url = url
        self.cause = cause


class ServerRejectionError(OfflineSyncError):
    """Raised when the remote endpoint answers with a non-2xx status."""

    def __init__(self, url: str, status: int, body: str | None = None):
        details: dict = {"url": url, "status": status}
        if body:
            details["body"] = body[:500]
        super().__init__(f"Server rejected request to {url}: HTTP {status}", details)
        self.url = url
        self.status = status
        self.body = body


class CacheWriteError(OfflineSyncError):
    """Raised when a cache entry cannot be persisted.

    Strategies log and swallow this; it never reaches a caller.
    """

    def __init__(self, request_key: str, cause: Exception | None = None):
        details = {"request_key": request_key}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Failed to cache response for {request_key}", details)
        self.request_key = request_key
        self.cause = cause


class QueueRecordCorruption(OfflineSyncError):
    """Raised when a persisted queue record cannot be decoded."""

    def __init__(self, record_id: str | None, reason: str):
        details = {"reason": reason}
        if record_id:
            details["record_id"] = record_id
        super().__init__(f"Corrupt queue record {record_id or '<unknown>'}: {reason}", details)
        self.record_id = record_id
        self.reason = reason


class StorageIOError(OfflineSyncError):
    """Raised when a storage I/O operation fails."""

    def __init__(self, operation: str, path: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if path:
            details["path"] = path
        if cause:
            details["cause"] = str(cause)
        message = f"Storage I/O error during {operation}"
        if path:
            message += f": {path}"
        super().__init__(message, details)
        self.operation = operation
        self.path = path
        self.cause = cause


class StorageConnectionError(OfflineSyncError):
    """Raised when the queue database cannot be opened.

    Note: Named StorageConnectionError to avoid shadowing the builtin ConnectionError.
    """

    def __init__(self, endpoint: str, cause: Exception | None = None):
        details = {"endpoint": endpoint}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Connection failed to {endpoint}", details)
        self.endpoint = endpoint
        self.cause = cause


class ConfigurationError(OfflineSyncError):
    """Raised when configuration values are missing or invalid."""

    def __init__(self, field: str, reason: str, value: str | None = None):
        details = {"field": field, "reason": reason}
        if value is not None:
            details["value"] = value
        super().__init__(f"Invalid configuration for {field}: {reason}", details)
        self.field = field
        self.reason = reason
        self.value = value
