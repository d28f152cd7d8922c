# storagekit

Building blocks for a file storage service that keeps its objects in an
S3-compatible bucket and its records in a Hasura-backed database.

It provides three modules:

- `storagekit.s3` — an `S3` client that uploads, downloads, lists and deletes
  objects under a root folder of one bucket, and creates and follows
  presigned download URLs. Requests are signed with AWS Signature Version 4
  using `requests`. Failures are raised as `APIError`, which carries an HTTP
  status code, a message and the underlying cause.
- `storagekit.hasura_metadata` — `apply_hasura_metadata`, which tracks the
  `storage.buckets` and `storage.files` tables in Hasura and creates the
  relationships between them. Metadata that is already tracked or already
  exists is accepted quietly; any other failure raises `HasuraMetadataError`.
- `storagekit.auth` — `is_admin` and the `NeedsAdmin` WSGI middleware, which
  answers `401 Unauthorized` to requests under a path prefix unless they
  carry the Hasura admin secret (with the `admin` role or no role at all).

## Installation

```
pip install storagekit
```

To run the tests:

```
pip install "storagekit[test]"
pytest
```

## Setting up Hasura metadata

```python
from storagekit.hasura_metadata import HasuraMetadataError, apply_hasura_metadata

try:
    apply_hasura_metadata("http://localhost:8080/v1", "secret")
except HasuraMetadataError as exc:
    print(f"metadata setup failed: {exc}")
```

The four requests are sent in order to `<url>/metadata` with the
`X-Hasura-admin-secret` header and a 10-second timeout; the first failure
stops the sequence. The individual payloads are available as plain
dictionaries from `buckets_table_metadata()`, `files_table_metadata()`,
`bucket_object_relationship()` and `files_array_relationship()`, and any one
of them can be sent with `post_metadata(base_url, hasura_secret, data)`.

## Protecting admin routes

```python
from storagekit.auth import NeedsAdmin, is_admin

app = NeedsAdmin(app, "/v1/admin", "secret")

is_admin("secret", {"X-Hasura-Admin-Secret": "secret"})  # True
is_admin("secret", {"X-Hasura-Admin-Secret": "secret", "X-Hasura-Role": "user"})  # False
```

`is_admin` looks header names up case-insensitively and accepts either a
string or a list of strings as a value (the first one is used). Requests
whose path does not start with the prefix are passed to the wrapped
application untouched.

## Working with objects

```python
from storagekit.s3 import S3, APIError

store = S3(
    endpoint="http://localhost:9000",
    region="eu-central-1",
    access_key="placeholder",
    secret_key="secret",
    bucket="default",
    root_folder="uploads",
    url="http://localhost:9000",
)

with open("report.txt", "rb") as content:
    etag = store.put_file(content, "report.txt", "text/plain")

print(store.list_files())

try:
    store.delete_file("report.txt")
except APIError as exc:
    print(exc.status_code, exc.public_response())
```

- `put_file(content, filepath, content_type)` rewinds `content`, uploads it
  and returns the object's ETag.
- `get_file(filepath, headers)` returns a `File` with the content type,
  length, ETag, status code, a streaming body and extra response headers.
  A `Range` request header is forwarded; a ranged reply gives status 206
  with `Accept-Ranges` and `Content-Range`.
- `create_presigned_url(filepath, expire)` returns the signed query string
  of a GET URL; `expire` is a `timedelta` or a number of seconds, at most
  seven days.
- `get_file_with_presigned_url(filepath, signature, headers)` fetches the
  object through the public `url` with that query string, forwarding the
  given headers. Replies 200, 206 and 304 give a `File`; any other reply is
  parsed as an S3 XML error and raised as an `APIError` with S3's status
  code and message.
- `delete_file(filepath)` removes an object; a missing object is not an
  error.
- `list_files()` returns the keys under the root folder, relative to it,
  from a single listing request.

Other failures (network errors, unexpected replies) are raised as a 500
`APIError` made by `internal_server_error`, whose public message does not
reveal the cause.

## What it does not do

storagekit is a library only. It has no command-line program and no HTTP
server or request handlers of its own: upload and download endpoints, file
records in the database and database schema migrations are left to the
application that uses it.