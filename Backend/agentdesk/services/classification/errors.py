"""Classifier error taxonomy.

Only two kinds change control flow in callers: a rate-limit signal stops
the remaining work of a batch, and an unrecognized model identifier
forces model rediscovery. Everything else is treated as recoverable.
"""


class ClassificationError(RuntimeError):
    """Base class for upstream classification failures."""


class ClassifierRateLimitError(ClassificationError):
    """The shared request budget is spent or the upstream answered with a quota error."""


class ModelNotFoundError(ClassificationError):
    """The upstream no longer recognizes the model identifier."""


class UpstreamCallError(ClassificationError):
    """Timeout, connection failure or any other upstream status."""


class MalformedResponseError(ClassificationError):
    """The upstream replied without usable text."""


class BatchParseError(ClassificationError):
    """A batch reply held no usable item/category entries."""


class NoWorkingModelError(ClassificationError):
    """Model discovery found nothing callable."""
