"""
Error taxonomy shared by the services.

Routers translate these into HTTP responses; the background loops catch
them per item so one bad record never stops a batch.
"""


class TransitionRejected(ValueError):
    """A requested transition is illegal or a safety guard is not met (HTTP 400)."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class TransitionConflict(RuntimeError):
    """A conditional write lost a race; the caller may retry (HTTP 409)."""


class OrderNotFound(LookupError):
    pass


class PrintJobNotFound(LookupError):
    pass


class PrinterNotFound(LookupError):
    pass


class GatewayUnavailable(RuntimeError):
    """The payment authority gave no usable answer; try again on the next pass."""
