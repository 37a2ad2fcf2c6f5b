"""Remote language model access."""

from .client import ModelClient, ModelConfig
from .retry import linear_backoff, retry_async

__all__ = ["ModelClient", "ModelConfig", "linear_backoff", "retry_async"]
