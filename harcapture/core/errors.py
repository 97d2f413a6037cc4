class HarCaptureError(Exception):
    """Base class for errors raised by harcapture."""


class NormalizationError(HarCaptureError):
    """A response body could not be reformatted for its declared content type."""


class CollectorStateError(HarCaptureError):
    """The event collector was asked to do something its current state forbids."""
