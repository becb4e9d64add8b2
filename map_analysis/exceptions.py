"""Exceptions raised and recorded by the map analysis pipeline."""


class MapAnalysisError(Exception):
    """Base map analysis error."""
    pass


class ModelUnavailableError(MapAnalysisError):
    """No model is loaded for the requested inference stage."""
    pass


class TensorShapeMismatchError(MapAnalysisError):
    """Model output does not have the expected rank or layout."""
    pass


class InferenceFailureError(MapAnalysisError):
    """Inference call failed or produced no usable output."""
    pass


class SegmentExtractionError(MapAnalysisError):
    """A foreground mask could not be extracted for a detection."""
    pass


class ExternalServiceTimeoutError(MapAnalysisError):
    """Text enhancement service did not answer in time."""
    pass


class ExternalServiceError(MapAnalysisError):
    """Text enhancement service returned an error."""
    pass


class AlreadyInProgressError(MapAnalysisError):
    """An analysis run is already in flight on this analyzer."""
    pass


class InvalidInputError(MapAnalysisError):
    """Input image is missing, empty or malformed."""
    pass


class AnalysisCancelledError(MapAnalysisError):
    """Run stopped at a cancellation checkpoint."""
    pass
