"""Error taxonomy for the low-stock filter and the status reconciler."""


class GrocerCoreError(Exception):
    """Base class for all grocer_core errors."""


class SubscriptionFailure(GrocerCoreError):
    """The upstream collection feed terminated abnormally."""


class RecordReadFailure(GrocerCoreError):
    """Reading candidate records from the store failed."""


class RecordWriteFailure(GrocerCoreError):
    """Writing fields to a single record failed."""

    def __init__(self, collection: str, record_id: str, reason: str):
        self.collection = collection
        self.record_id = record_id
        self.reason = reason
        super().__init__(f"{collection}/{record_id}: {reason}")


class RuleEvaluationError(GrocerCoreError):
    """A record does not fit the shape its status rule expects."""

    def __init__(self, record_id: str, reason: str):
        self.record_id = record_id
        self.reason = reason
        super().__init__(f"{record_id}: {reason}")
