"""
Custom exceptions for the municipal brief pipeline.

Every stage raises one of these; the run coordinator converts them into
per-candidate error records so one bad bill never aborts a run.
"""


class MuniPipelineError(Exception):
    """Base exception for pipeline errors."""
    pass


class ParseError(MuniPipelineError):
    """Fetched page structure was not recognized (e.g. no bill identifier)."""
    pass


class NotFoundError(MuniPipelineError):
    """Candidate identifier does not exist upstream. Expected, not a failure."""
    pass


class TransientError(MuniPipelineError):
    """Network, availability or timeout problem. Retried on a later run only."""
    pass


class AnalysisError(MuniPipelineError):
    """Analysis engine returned malformed or unusable output."""
    pass


class PersistenceError(MuniPipelineError):
    """A storage write failed and its transaction was rolled back."""
    pass


class APIKeyMissingError(MuniPipelineError):
    """Required API key is not configured."""
    pass
