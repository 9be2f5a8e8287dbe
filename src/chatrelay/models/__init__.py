"""Database models and storage-independent records."""
