"""HTTP API for ChatRelay."""
