"""
Clinsight - Exception hierarchy
"""


class ClinsightError(Exception):
    """Base exception for all pipeline errors."""
    pass


class ConfigurationError(ClinsightError):
    """Invalid or missing configuration."""
    pass


class GenerativeServiceError(ClinsightError):
    """Generative-language call could not produce a usable answer."""
    pass


class ServiceUnavailableError(GenerativeServiceError):
    """Provider call failed, timed out, or no provider is reachable."""
    pass


class MalformedResponseError(GenerativeServiceError):
    """Provider answered, but not with parseable or schema-conforming JSON."""
    pass


class EmbeddingServiceError(ClinsightError):
    """Embedding model could not be loaded or failed to encode text."""
    pass


class ExtractionFailedError(ClinsightError):
    """Transcript was empty, or neither extraction pass produced usable data."""
    pass
