"""Project-wide custom exception types."""


class RecordNotFoundError(LookupError):
    """Raised when a stored survey result does not exist."""

    def __init__(self, record_id: str) -> None:  # noqa: D401 – simple constructor
        super().__init__(f"Record {record_id} not found.")
        self.record_id = record_id


class RecordExpiredError(RuntimeError):
    """Raised when a shared survey result is older than its link lifetime."""

    def __init__(self, record_id: str) -> None:  # noqa: D401 – simple constructor
        super().__init__(f"Record {record_id} has expired.")
        self.record_id = record_id


class InvalidRecordError(ValueError):
    """Raised when a payload handed to a record writer fails validation."""


class UnknownExportError(LookupError):
    """Raised when an unsupported export kind is requested."""
