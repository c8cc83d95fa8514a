class LinkError(Exception):
    """Base class for wireless link failures."""


class LinkUnavailableError(LinkError):
    """Raised when a write is attempted while the link is not connected."""


class DeviceNotFoundError(LinkError):
    """Raised when discovery finds no device advertising the UART service."""
