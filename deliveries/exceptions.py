"""
Error types raised by the delivery tracking collaborators.
"""


class DeliveryTrackingError(Exception):
    pass


class NotFound(DeliveryTrackingError):
    pass


class RouteNotFound(NotFound):
    pass


class DriverNotFound(NotFound):
    pass


class RecordNotFound(NotFound):
    pass


class ConfigurationError(DeliveryTrackingError, ValueError):
    pass


class InvalidLocationUpdate(ConfigurationError):
    pass


class ExternalServiceError(DeliveryTrackingError):
    """A feature service, solver or messaging call failed."""
