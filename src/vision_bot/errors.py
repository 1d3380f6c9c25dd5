"""
Exceptions raised by the detection session.
"""


class VisionBotError(Exception):
    """Base class for all Vision Bot errors."""


class ModelUnavailable(VisionBotError):
    """No inference backend could be initialized, or the model failed to load."""


class CameraUnavailable(VisionBotError):
    """Camera permission denied, device missing, or no frame could be read."""


class InvalidState(VisionBotError):
    """An operation was requested from a session state that does not allow it."""
