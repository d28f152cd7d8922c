"""S3-compatible object storage backend signed with AWS Signature Version 4."""

from __future__ import annotations

import hashlib
import hmac
import re
import xml.etree.ElementTree as ElementTree
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, BinaryIO, Optional, Union
from urllib.parse import quote, urlsplit

import requests

Headers = Mapping[str, Union[str, Sequence[str]]]

_ALGORITHM = "AWS4-HMAC-SHA256"
_MAX_PRESIGN_SECONDS = 7 * 24 * 60 * 60


class APIError(Exception):
    """An error carrying the HTTP status and the message shown to clients."""

    def __init__(self, status_code: int, message: str, cause: Optional[BaseException]) -> None:
        super().__init__(message if cause is None else f"{message}: {cause}")
        self.status_code = status_code
        self.message = message
        self.cause = cause

    def public_response(self) -> dict[str, str]:
        """The part of the error that is safe to return to a client."""
        return {"message": self.message}


def internal_server_error(cause: BaseException) -> APIError:
    """Wrap ``cause`` in a 500 error whose details stay private."""
    return APIError(500, "an internal server error occurred", cause)


def _fail(what: str, detail: object) -> APIError:
    return internal_server_error(RuntimeError(f"{what}: {detail}"))


@dataclass
class File:
    """A file read from storage, ready to be streamed back to a client."""

    content_type: str
    content_length: int
    etag: str
    status_code: int
    body: Any
    extra_headers: dict[str, list[str]] = field(default_factory=dict)


def _child_text(element: ElementTree.Element, name: str) -> str:
    for child in element:
        if child.tag.rsplit("}", 1)[-1] == name:
            return child.text or ""
    return ""


def parse_s3_error(response: requests.Response) -> APIError:
    """Turn an S3 XML error response into an ``APIError`` with its status."""
    try:
        root = ElementTree.fromstring(response.content)
    except ElementTree.ParseError:
        text = response.content.decode("utf-8", errors="replace")
        return _fail(f"problem parsing S3 error, status code {response.status_code}", text)
    message = _child_text(root, "Message")
    return APIError(response.status_code, message, RuntimeError(message))


def _header_values(headers: Optional[Headers]) -> dict[str, str]:
    return {
        key: value if isinstance(value, str) else ", ".join(value)
        for key, value in (headers or {}).items()
    }


def _hmac(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


def _canonical_query(query: Mapping[str, str]) -> str:
    return "&".join(
        f"{k}={v}" for k, v in sorted((quote(k, safe=""), quote(v, safe="")) for k, v in query.items())
    )


def _parse_int32(value: str) -> int:
    if not re.fullmatch(r"[+-]?[0-9]+", value) or not -(2**31) <= int(value) < 2**31:
        raise ValueError(f"invalid 32-bit integer {value!r}")
    return int(value)


class S3:
    """File storage kept under a root folder of one S3 bucket."""

    def __init__(
        self,
        endpoint: str,
        region: str,
        access_key: str,
        secret_key: str,
        bucket: str,
        root_folder: str,
        url: str,
        session: Optional[requests.Session] = None,
    ) -> None:
        parts = urlsplit(endpoint)
        if not parts.scheme or not parts.netloc:
            raise _fail("problem creating S3 session", f"invalid endpoint {endpoint!r}")
        self._origin = f"{parts.scheme}://{parts.netloc}"
        self._host = parts.netloc
        self._base_path = parts.path.rstrip("/")
        self.region = region
        self._access_key = access_key
        self._secret_key = secret_key
        self.bucket = bucket
        self.root_folder = root_folder
        self.url = url
        self._session = session if session is not None else requests.Session()

    def _path(self, filepath: Optional[str]) -> str:
        path = f"{self._base_path}/{quote(self.bucket, safe='/')}"
        if filepath is not None:
            path += "/" + quote(f"{self.root_folder}/{filepath}", safe="/")
        return path

    def _scope(self, amz_date: str) -> str:
        return f"{amz_date[:8]}/{self.region}/s3/aws4_request"

    def _sign(self, amz_date: str, canonical_request: str) -> str:
        string_to_sign = "\n".join(
            (
                _ALGORITHM,
                amz_date,
                self._scope(amz_date),
                hashlib.sha256(canonical_request.encode("utf-8")).hexdigest(),
            )
        )
        key = f"AWS4{self._secret_key}".encode("utf-8")
        for part in (amz_date[:8], self.region, "s3", "aws4_request"):
            key = _hmac(key, part)
        return hmac.new(key, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()

    def _send(
        self,
        what: str,
        method: str,
        filepath: Optional[str],
        *,
        query: Optional[Mapping[str, str]] = None,
        headers: Optional[Mapping[str, str]] = None,
        body: bytes = b"",
        stream: bool = False,
    ) -> requests.Response:
        amz_date = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        payload_hash = hashlib.sha256(body).hexdigest()
        signed = {k.lower(): v for k, v in (headers or {}).items()}
        signed.update(
            {"host": self._host, "x-amz-date": amz_date, "x-amz-content-sha256": payload_hash}
        )
        names = sorted(signed)
        signed_headers = ";".join(names)
        path = self._path(filepath)
        query_string = _canonical_query(query or {})
        canonical_request = "\n".join(
            (
                method,
                path,
                query_string,
                "".join(f"{n}:{' '.join(signed[n].split())}\n" for n in names),
                signed_headers,
                payload_hash,
            )
        )
        outgoing = {n: v for n, v in signed.items() if n != "host"}
        outgoing["authorization"] = (
            f"{_ALGORITHM} Credential={self._access_key}/{self._scope(amz_date)}, "
            f"SignedHeaders={signed_headers}, Signature={self._sign(amz_date, canonical_request)}"
        )
        url = f"{self._origin}{path}" + (f"?{query_string}" if query_string else "")
        try:
            response = self._session.request(
                method, url, headers=outgoing, data=body or None, stream=stream
            )
        except requests.RequestException as exc:
            raise _fail(what, exc) from exc
        if not response.ok:
            try:
                root = ElementTree.fromstring(response.content)
                detail = f"{_child_text(root, 'Code')}: {_child_text(root, 'Message')}, "
            except ElementTree.ParseError:
                detail = ""
            raise _fail(what, f"{detail}status code {response.status_code}")
        return response

    def put_file(self, content: BinaryIO, filepath: str, content_type: str) -> str:
        """Upload ``content`` from its beginning and return the object's ETag."""
        try:
            content.seek(0)
            body = content.read()
        except OSError as exc:
            raise _fail("problem going to the beginning of the content", exc) from exc
        response = self._send(
            "problem putting object",
            "PUT",
            filepath,
            headers={"Content-Type": content_type},
            body=body,
        )
        return response.headers.get("ETag", "")

    def get_file(self, filepath: str, headers: Optional[Headers] = None) -> File:
        """Fetch a file, honouring a ``Range`` request header."""
        byte_range = next(
            (v for k, v in _header_values(headers).items() if k.lower() == "range"), ""
        )
        response = self._send(
            "problem getting object",
            "GET",
            filepath,
            headers={"Range": byte_range} if byte_range else None,
            stream=True,
        )
        status, extra = 200, {}
        content_range = response.headers.get("Content-Range")
        if content_range is not None:
            status, extra = 206, {"Accept-Ranges": ["bytes"], "Content-Range": [content_range]}
        try:
            length = int(response.headers.get("Content-Length", "0"))
        except ValueError as exc:
            raise _fail("problem getting object: bad Content-Length", exc) from exc
        return File(
            content_type=response.headers.get("Content-Type", ""),
            content_length=length,
            etag=response.headers.get("ETag", ""),
            status_code=status,
            body=response.raw,
            extra_headers=extra,
        )

    def create_presigned_url(self, filepath: str, expire: Union[timedelta, int, float]) -> str:
        """Return the query string of a presigned GET URL valid for ``expire``."""
        seconds = int(expire.total_seconds() if isinstance(expire, timedelta) else expire)
        if seconds > _MAX_PRESIGN_SECONDS:
            raise _fail("problem generating pre-signed URL", "expiration longer than 7 days")
        amz_date = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        query_string = _canonical_query(
            {
                "X-Amz-Algorithm": _ALGORITHM,
                "X-Amz-Credential": f"{self._access_key}/{self._scope(amz_date)}",
                "X-Amz-Date": amz_date,
                "X-Amz-Expires": str(seconds),
                "X-Amz-SignedHeaders": "host",
            }
        )
        canonical_request = "\n".join(
            (
                "GET",
                self._path(filepath),
                query_string,
                f"host:{self._host}\n",
                "host",
                "UNSIGNED-PAYLOAD",
            )
        )
        return f"{query_string}&X-Amz-Signature={self._sign(amz_date, canonical_request)}"

    def get_file_with_presigned_url(
        self, filepath: str, signature: str, headers: Optional[Headers] = None
    ) -> File:
        """Fetch a file through the public URL using a presigned query string."""
        if self.root_folder:
            filepath = f"{self.root_folder}/{filepath}"
        url = f"{self.url}/{quote(self.bucket, safe='/')}/{quote(filepath, safe='/')}?{signature}"
        try:
            response = self._session.get(url, headers=_header_values(headers), stream=True)
        except requests.RequestException as exc:
            raise _fail("problem getting file", exc) from exc
        if response.status_code not in (200, 206, 304):
            raise parse_s3_error(response)

        extra: dict[str, list[str]] = {}
        length = 0
        if response.status_code in (200, 206):
            extra = {"Accept-Ranges": ["bytes"]}
            if response.status_code == 206:
                extra["Content-Range"] = [response.headers.get("Content-Range", "")]
            try:
                length = _parse_int32(response.headers.get("Content-Length", ""))
            except ValueError as exc:
                raise _fail("problem parsing Content-Length", exc) from exc
        return File(
            content_type=response.headers.get("Content-Type", ""),
            content_length=length,
            etag=response.headers.get("Etag", ""),
            status_code=response.status_code,
            body=response.raw,
            extra_headers=extra,
        )

    def delete_file(self, filepath: str) -> None:
        """Delete a file; deleting a missing file is not an error."""
        self._send("problem deleting file in s3", "DELETE", filepath)

    def list_files(self) -> list[str]:
        """Paths of the files under the root folder, relative to it."""
        what = "problem listing objects in s3"
        prefix = f"{self.root_folder}/"
        response = self._send(what, "GET", None, query={"prefix": prefix})
        try:
            root = ElementTree.fromstring(response.content)
        except ElementTree.ParseError as exc:
            raise _fail(what, exc) from exc
        return [
            _child_text(element, "Key").removeprefix(prefix)
            for element in root
            if element.tag.rsplit("}", 1)[-1] == "Contents"
        ]