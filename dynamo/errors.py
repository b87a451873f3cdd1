"""
Error taxonomy shared by every dynamo component
"""


class DynamoError(Exception):
    """Base class for all dynamo errors"""


class ConfigurationError(DynamoError):
    """Bad scenario, schedule or settings. Fatal, reported before emission."""


class TransportError(DynamoError):
    """Connection to the collector failed or was lost."""


class GenerationError(DynamoError):
    """A single record could not be instantiated from its template."""


class DecodeError(DynamoError, ValueError):
    """A line did not match the canonical grammar of its format."""
