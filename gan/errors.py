"""
Exceptions raised by the GAN training pipeline and the inference library.
"""


class GANError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(GANError):
    """Missing or invalid dataset/inputs path, malformed cache file or bad setting."""


class ResourceLeakError(GANError):
    """The number of live tensors keeps growing between training steps."""


class CheckpointError(GANError):
    """A checkpoint could not be written or read."""


class NotLoadedError(GANError):
    """The inference library was used before a model was loaded."""


class InvalidArgumentError(GANError, ValueError):
    """A caller passed an argument outside the accepted range."""
