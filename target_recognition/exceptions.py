"""Custom exceptions for the target recognition package."""


class RecognitionError(Exception):
    """Base recognition error."""
    pass


class LoadFailure(RecognitionError):
    """An image, mask or list could not be read or decoded."""
    pass


class InsufficientFeatures(RecognitionError):
    """Fewer keypoints or correspondences than a transform fit needs."""
    pass


class DegenerateTransform(RecognitionError):
    """The robust transform fit did not converge to a usable homography."""
    pass


class ConfigurationFailure(RecognitionError):
    """List files or report destinations cannot be opened."""
    pass
