"""Database repositories."""
