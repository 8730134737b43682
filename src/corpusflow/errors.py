"""Exception taxonomy shared by the workflows and the retrieval pipeline."""

from __future__ import annotations


class CorpusflowError(Exception):
    """Base class for every error raised by corpusflow."""


class NotFoundError(CorpusflowError):
    """A job, document, namespace or organization does not exist.

    Workflows treat this as a benign outcome: deletion races make
    "already gone" an expected state.
    """


class PayloadValidationError(CorpusflowError):
    """An ingest job payload carries an unrecognised variant."""


class DispatchError(CorpusflowError):
    """Triggering a child workflow run failed."""


class InvalidJobStateError(CorpusflowError):
    """The requested transition is not allowed from the job's current status."""


class ConfigurationError(CorpusflowError):
    """A namespace references an unsupported provider or incomplete config."""


class NodeParseError(CorpusflowError):
    """A vector match's metadata could not be turned into a content node."""


class RetrievalError(CorpusflowError):
    """Vector search returned matches but none of them could be parsed."""
