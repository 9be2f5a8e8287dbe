"""ChatRelay - channel-serialized conversation relay for a reasoning engine."""

__version__ = "0.1.0"
