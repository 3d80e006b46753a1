"""
Error taxonomy for the refresh pipeline.

Each error is raised by the layer that detects it and mapped to a job
outcome only by the scheduler worker.
"""


class CatalogSyncError(Exception):
    """Base class for all pipeline errors."""
    pass


class TransientNetworkError(CatalogSyncError):
    """Connectivity or HTTP-layer failure while fetching. Worth retrying."""
    pass


class PermanentError(CatalogSyncError):
    """Malformed or unexpected remote response. Retrying will not help."""
    pass


class PersistenceError(CatalogSyncError):
    """The local store could not be read or written."""
    pass
