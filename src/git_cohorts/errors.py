from __future__ import annotations


class GitCohortsError(Exception):
    pass


class SourceError(GitCohortsError):
    """A repository could not be read. The repository is skipped."""


class RecordError(GitCohortsError):
    """A single commit record was malformed. The record is skipped."""


class StoreError(GitCohortsError):
    """The SQLite store is unavailable or corrupt. Fatal."""


class ConfigurationError(GitCohortsError):
    """Bad cohort/interval/unit choice or metadata. Fatal, raised before work begins."""


class NoChangeDataError(ConfigurationError):
    pass
