"""Run-level exceptions.

Per-region problems never surface as exceptions past the batch boundary;
these classes cover the failures that abort or degrade a whole run.
"""


class ScrapeError(Exception):
    """Base class for run-level scraping failures."""


class RegionDirectoryError(ScrapeError):
    """The region list could not be fetched or understood. Fatal."""


class BrowserHostError(ScrapeError):
    """The shared headless browser could not be started. Fatal."""


class PublishError(ScrapeError):
    """Writing to the spreadsheet failed. The snapshot is still kept."""
