"""Helpers for S3-backed file storage with Hasura metadata and admin authentication."""

__version__ = "0.1.0"
__all__ = ["auth", "hasura_metadata", "s3"]