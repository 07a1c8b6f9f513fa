"""
Error taxonomy for the catalog write queue.

Job handlers raise these; the worker decides from the class whether an
attempt may be retried. Cache errors never appear here, the cache layer
swallows them.
"""


class CatalogError(Exception):
    """Base class for catalog errors"""


class JobError(CatalogError):
    """A job attempt failed and may be retried under the queue's retry policy"""


class NonRetryableJobError(JobError):
    """A job failed in a way another attempt cannot fix"""


class EntityNotFoundError(NonRetryableJobError):
    def __init__(self, entity_type: str = "entity", entity_id: str = ""):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found" + (f": {entity_id}" if entity_id else ""))


class InvalidOperationError(NonRetryableJobError):
    def __init__(self, operation):
        self.operation = operation
        super().__init__(f"invalid operation: {operation!r}")


class InvalidPayloadError(NonRetryableJobError):
    """Job data does not validate against the entity schema"""


class DuplicateEntityError(NonRetryableJobError):
    """The pre-assigned id already exists, e.g. a redelivered create"""


class StoreUnavailableError(JobError):
    """The persistent store could not complete the operation"""
