from __future__ import annotations


class MarkdropError(Exception):
    pass


class ValidationError(MarkdropError):
    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message


class DeliveryError(MarkdropError):
    pass


class TransientDeliveryError(DeliveryError):
    def __init__(self, message: str, retry_after: int | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class PermanentDeliveryError(DeliveryError):
    pass


class InspectionLookupError(MarkdropError):
    def __init__(self, lookup: str, cause: BaseException):
        super().__init__(f"{lookup} lookup failed: {cause}")
        self.lookup = lookup
        self.cause = cause


class QueueStoreError(MarkdropError):
    pass
