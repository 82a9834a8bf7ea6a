"""Exceptions raised by the image handle."""


class ImageError(Exception):
    """Base class for every error raised by imagehandle."""


class InvalidInput(ImageError, ValueError):
    """Bad path, unknown enum value or out-of-range numeric parameter."""


class Unsupported(ImageError):
    """The file format could not be detected, decoded or is not supported."""


class InvalidOperation(ImageError):
    """The operation does not apply to the image format."""


class OperationFailed(ImageError, RuntimeError):
    """A backend primitive refused the request.

    ``step`` names the sub-step that failed, e.g. ``"allocate"`` or ``"copy"``.
    """

    def __init__(self, message: str, step: str):
        super().__init__(message)
        self.step = step


class EncodeError(ImageError, RuntimeError):
    """The backend did not produce encoded bytes."""
