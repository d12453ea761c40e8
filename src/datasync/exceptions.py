"""
Custom exceptions for the datasync engine.
"""

class DataSyncException(Exception):
    """Base exception for all application-specific errors."""
    pass

class ConfigurationError(DataSyncException):
    """Invalid sync configuration, detected before any I/O."""
    pass

class EnumerationError(DataSyncException):
    """A source or destination listing could not be produced."""
    pass

class ExecutionError(DataSyncException):
    """Error driving a sync run."""
    pass

class ConnectorError(DataSyncException):
    """Error related to a connector."""
    pass

class TransferError(DataSyncException):
    """Error applying a single decision to the destination."""

    transient = False

    def __init__(self, message: str, key: str = ""):
        super().__init__(message)
        self.key = key

class TransientTransferError(TransferError):
    """Timeout or temporary unavailability; worth retrying."""

    transient = True

class VerificationError(TransferError):
    """Post-write fingerprint did not match the expected fingerprint."""

    def __init__(self, key: str = ""):
        super().__init__("verification-mismatch", key=key)
