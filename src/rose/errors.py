"""Exception hierarchy for the conversational engine."""


class RoseError(Exception):
    """Base class for all Rose errors."""


class TransportError(RoseError):
    """Network failure or timeout talking to the model or chat platform."""


class ModelResponseError(RoseError):
    """The model answered, but the completion body was empty or malformed."""


class StorageError(RoseError):
    """Persistence I/O failure in the memory store."""


class ValidationError(RoseError):
    """Malformed inbound event or invalid argument."""
