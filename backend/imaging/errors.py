class ImageServiceError(Exception):
    """Base class for every failure the engine reports to its caller."""


class SourceUnavailable(ImageServiceError):
    """The source (and every fallback) could not be fetched or decoded."""


class InvalidParameter(ImageServiceError, ValueError):
    """A parameter string could not be parsed; callers substitute the default."""


class GeometryViolation(ImageServiceError):
    """The requested crop box does not fit inside the (scaled) source."""


class PipelineStepFailure(ImageServiceError):
    def __init__(self, step: str, index: int, message: str = ""):
        self.step  = step
        self.index = index
        super().__init__(f"step {index} ({step}) failed{': ' + message if message else ''}")


class CacheWriteFailure(ImageServiceError):
    """Writing the rendered file or its cache-log entry failed."""
