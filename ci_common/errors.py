"""
Error taxonomy for the CI status dashboard.

Only ProviderRejected and ConfigurationError are fatal. ProviderUnavailable
is transient and retried on the next refresh; NormalizationAnomaly is
recorded on the affected build and never stops the pipeline.
"""


class CIStatusError(Exception):
    """Base class for all dashboard errors."""


class ProviderUnavailable(CIStatusError):
    """The provider could not be reached or returned a transient failure."""

    def __init__(self, project: str, reason: str):
        self.project = project
        self.reason = reason
        super().__init__(f"{project}: provider unavailable: {reason}")


class ProviderRejected(CIStatusError):
    """The provider refused the request (credentials or scope are wrong)."""

    def __init__(self, project: str, reason: str, status_code: int | None = None):
        self.project = project
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"{project}: provider rejected the request: {reason}")


class NormalizationAnomaly(CIStatusError):
    """A raw build record could not be mapped cleanly to a status."""

    def __init__(self, raw_status: str | None, reason: str):
        self.raw_status = raw_status
        self.reason = reason
        super().__init__(reason)


class ConfigurationError(CIStatusError):
    """A required setting is missing or invalid."""
