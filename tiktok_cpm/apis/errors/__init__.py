"""Exceptions raised by the scraping, parsing and analytics core.

Routers translate these into HTTP responses; the multi-creator pipeline turns
them into a per-creator ``error`` string instead of aborting the batch.
"""


class CPMAnalysisError(Exception):
    """Base class for every failure the analysis pipeline can report."""


class InvalidAnalysisInputError(CPMAnalysisError):
    """Request parameters were rejected before any network call."""


class ScrapeFailedError(CPMAnalysisError):
    """The scraping proxy returned an error or could not be reached."""


class ScraperNotConfiguredError(ScrapeFailedError):
    """No API key is available for the scraping proxy."""


class NoMarkupFoundError(CPMAnalysisError):
    """The event-stream payload carried no HTML document."""
