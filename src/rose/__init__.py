"""Rose: a companion chat bot with durable per-user memory."""

__version__ = "0.1.0"
