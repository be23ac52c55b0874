"""Custom exception classes for the advisor core."""


class AdvisorError(Exception):
    """Base exception for all advisor errors."""

    pass


class ConfigurationError(AdvisorError):
    """Exception raised when configuration is invalid or missing."""

    pass


class ClassificationFailure(AdvisorError):
    """Upstream intent classification errored or returned an unparseable reply."""

    pass


class StageFailure(AdvisorError):
    """Base exception for a failed generation stage."""

    pass


class DraftFailure(StageFailure):
    pass


class ReviewFailure(StageFailure):
    pass


class PresentationFailure(StageFailure):
    pass


class ReferenceDataMissing(AdvisorError):
    """Raised when the ratebook cannot be loaded at startup."""

    pass


class EstimateUnavailable(AdvisorError, LookupError):
    """Raised when the ratebook has no entry for the requested policy type."""

    pass


class ToolQueryRejected(AdvisorError):
    """Raised when a tool call fails validation before dispatch."""

    pass
