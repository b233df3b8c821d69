class OrderError(Exception):
    """Base class for order-view domain errors."""


class OrderDecodeError(OrderError):
    """Payload is not a decodable order document."""


class OrderValidationError(OrderError):
    """Decoded order is missing its identity."""


class StoreError(OrderError):
    """The record store could not complete a read or write."""


class WarmLoadError(OrderError):
    """The record stream failed while rebuilding the read cache."""
