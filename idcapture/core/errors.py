"""Custom exceptions for the capture session."""


class CaptureError(Exception):
    """Base error for idcapture."""
    pass


class CameraError(CaptureError):
    """Camera could not be acquired. The message is shown to the user as-is."""
    pass


class ModelLoadError(CaptureError):
    """Face detection model could not be loaded."""
    pass


class VisionEngineError(CaptureError):
    """The contour vision engine could not be imported or never became ready."""
    pass


class ConfigError(CaptureError):
    """Invalid configuration value."""
    pass
