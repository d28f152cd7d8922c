"""Register the storage tables and relationships with the Hasura metadata API."""

from __future__ import annotations

import json
from typing import Any

import requests

TIMEOUT_SECONDS = 10
_TOLERATED_CODES = frozenset({"already-tracked", "already-exists"})


class HasuraMetadataError(Exception):
    """Raised when the Hasura metadata API rejects or cannot receive a request."""


def post_metadata(base_url: str, hasura_secret: str, data: Any) -> None:
    """POST ``data`` to ``<base_url>/metadata``.

    Responses saying the object is already tracked or already exists are
    treated as success.
    """
    try:
        body = json.dumps(data)
    except (TypeError, ValueError) as exc:
        raise HasuraMetadataError(f"problem marshalling data: {exc}") from exc

    headers = {
        "Content-Type": "application/json; charset=UTF-8",
        "X-Hasura-admin-secret": hasura_secret,
    }
    try:
        response = requests.post(
            f"{base_url}/metadata",
            data=body.encode("utf-8"),
            headers=headers,
            timeout=TIMEOUT_SECONDS,
        )
    except requests.RequestException as exc:
        raise HasuraMetadataError(f"problem executing request: {exc}") from exc

    with response:
        if response.status_code == 200:
            return
        failure = HasuraMetadataError(
            f"status_code: {response.status_code}\nresponse: {response.text}"
        )
        try:
            payload = response.json()
        except ValueError:
            raise failure from None
        if isinstance(payload, dict) and payload.get("code") in _TOLERATED_CODES:
            return
        raise failure


def _table(name: str) -> dict[str, str]:
    return {"schema": "storage", "name": name}


def _root_fields(plural: str, singular: str) -> dict[str, str]:
    capital_plural = plural[0].upper() + plural[1:]
    capital_singular = singular[0].upper() + singular[1:]
    return {
        "select": plural,
        "select_by_pk": singular,
        "select_aggregate": f"{plural}Aggregate",
        "insert": f"insert{capital_plural}",
        "insert_one": f"insert{capital_singular}",
        "update": f"update{capital_plural}",
        "update_by_pk": f"update{capital_singular}",
        "delete": f"delete{capital_plural}",
        "delete_by_pk": f"delete{capital_singular}",
    }


def _track_table(name: str, singular: str, columns: dict[str, str]) -> dict[str, Any]:
    return {
        "type": "pg_track_table",
        "args": {
            "source": "default",
            "table": _table(name),
            "configuration": {
                "custom_name": name,
                "custom_root_fields": _root_fields(name, singular),
                "custom_column_names": dict(columns),
            },
        },
    }


def buckets_table_metadata() -> dict[str, Any]:
    """Metadata request tracking the ``storage.buckets`` table."""
    return _track_table(
        "buckets",
        "bucket",
        {
            "id": "id",
            "created_at": "createdAt",
            "updated_at": "updatedAt",
            "download_expiration": "downloadExpiration",
            "min_upload_file_size": "minUploadFileSize",
            "max_upload_file_size": "maxUploadFileSize",
            "cache_control": "cacheControl",
            "presigned_urls_enabled": "presignedUrlsEnabled",
        },
    )


def files_table_metadata() -> dict[str, Any]:
    """Metadata request tracking the ``storage.files`` table."""
    return _track_table(
        "files",
        "file",
        {
            "id": "id",
            "created_at": "createdAt",
            "updated_at": "updatedAt",
            "bucket_id": "bucketId",
            "name": "name",
            "size": "size",
            "mime_type": "mimeType",
            "etag": "etag",
            "is_uploaded": "isUploaded",
            "uploaded_by_user_id": "uploadedByUserId",
        },
    )


def bucket_object_relationship() -> dict[str, Any]:
    """Metadata request creating the ``files.bucket`` object relationship."""
    return {
        "type": "pg_create_object_relationship",
        "args": {
            "table": _table("files"),
            "name": "bucket",
            "source": "default",
            "using": {"foreign_key_constraint_on": ["bucket_id"]},
        },
    }


def files_array_relationship() -> dict[str, Any]:
    """Metadata request creating the ``buckets.files`` array relationship."""
    return {
        "type": "pg_create_array_relationship",
        "args": {
            "table": _table("buckets"),
            "name": "files",
            "source": "default",
            "using": {
                "foreign_key_constraint_on": {
                    "table": _table("files"),
                    "columns": ["bucket_id"],
                }
            },
        },
    }


def apply_hasura_metadata(url: str, hasura_secret: str) -> None:
    """Track the storage tables and create their relationships, in order."""
    steps = (
        (buckets_table_metadata, "problem adding metadata for the buckets table"),
        (files_table_metadata, "problem adding metadata for the files table"),
        (bucket_object_relationship, "problem creating object relationship for buckets"),
        (files_array_relationship, "problem creating array relationships"),
    )
    for build, context in steps:
        try:
            post_metadata(url, hasura_secret, build())
        except HasuraMetadataError as exc:
            raise HasuraMetadataError(f"{context}: {exc}") from exc