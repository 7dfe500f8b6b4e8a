"""
Exception types shared across the survey service.

Extraction errors and primary store errors propagate to the caller;
everything else is handled where it happens and logged.
"""

from __future__ import annotations


class SurveyServiceError(Exception):
    """Base class for all service errors."""


class ExtractionError(SurveyServiceError):
    """Base class for failures turning a transcript into a SurveyResult."""


class ExtractionFailed(ExtractionError):
    """The backend call failed or its reply held no parsable JSON object."""


class ExtractionSchemaInvalid(ExtractionError):
    """The reply parsed as JSON but did not match the survey result schema."""


class GenerationError(SurveyServiceError):
    """The generative backend returned an error or an empty reply."""


class GatewayError(SurveyServiceError):
    """The SMS gateway rejected a send or could not be reached."""


class StoreError(SurveyServiceError):
    """A read or write of a primary record (customer, visit, survey) failed."""
