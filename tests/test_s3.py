import dataclasses
import hashlib
import io
import re
from datetime import timedelta
from urllib.parse import parse_qs, urlsplit

import pytest
import requests
import responses

from storagekit.s3 import S3, APIError, File, internal_server_error, parse_s3_error

ENDPOINT = "http://localhost:9000"
ROOT = "f215cf48-7458-4596-9aa5-2159fc6a3caf"
OBJECT_URL = f"{ENDPOINT}/default/{ROOT}/sample.txt"
ETAG = '"8ba761284b556cd234f73ec0b75fa054"'
CONTENT = b"this is a sample\n"


def _error_xml(code, message):
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f"<Error><Code>{code}</Code><Message>{message}</Message>"
        "<Resource>/default/x</Resource></Error>"
    )


@pytest.fixture
def s3():
    return S3(ENDPOINT, "eu-central-1", "placeholder", "secret", "default", ROOT, ENDPOINT)


@pytest.fixture
def rsps():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as mock:
        yield mock


def test_api_error_public_response_and_status():
    err = APIError(404, "not here", RuntimeError("not here"))
    assert err.status_code == 404
    assert err.public_response() == {"message": "not here"}


def test_internal_server_error_hides_cause():
    cause = RuntimeError("database exploded")
    err = internal_server_error(cause)
    assert err.status_code == 500
    assert err.cause is cause
    assert "database exploded" not in err.public_response()["message"]


def test_put_file_returns_etag_and_signs_request(s3, rsps):
    rsps.put(OBJECT_URL, headers={"ETag": ETAG})
    content = io.BytesIO(CONTENT)
    content.read(4)
    assert s3.put_file(content, "sample.txt", "text") == ETAG
    request = rsps.calls[0].request
    assert request.body == CONTENT
    assert request.headers["Content-Type"] == "text"
    assert request.headers["x-amz-content-sha256"] == hashlib.sha256(CONTENT).hexdigest()
    auth = request.headers["authorization"]
    assert auth.startswith("AWS4-HMAC-SHA256 Credential=placeholder/")
    assert "/eu-central-1/s3/aws4_request" in auth
    assert "SignedHeaders=content-type;host;x-amz-content-sha256;x-amz-date" in auth
    assert re.search(r"Signature=[0-9a-f]{64}$", auth)


def test_put_file_failure_is_internal_error(s3, rsps):
    rsps.put(OBJECT_URL, status=403, body=_error_xml("AccessDenied", "Access Denied"))
    with pytest.raises(APIError) as info:
        s3.put_file(io.BytesIO(CONTENT), "sample.txt", "text")
    assert info.value.status_code == 500
    assert "AccessDenied" in str(info.value.cause)


def test_get_file_full(s3, rsps):
    rsps.get(
        OBJECT_URL,
        body=CONTENT,
        headers={"Content-Type": "text", "Content-Length": "17", "ETag": ETAG},
    )
    got = s3.get_file("sample.txt", {})
    assert dataclasses.replace(got, body=None) == File(
        content_type="text",
        content_length=17,
        etag=ETAG,
        status_code=200,
        body=None,
        extra_headers={},
    )
    assert got.body.read() == CONTENT


def test_get_file_range(s3, rsps):
    rsps.get(
        OBJECT_URL,
        status=206,
        body=b"this",
        headers={
            "Content-Type": "text",
            "Content-Length": "4",
            "ETag": ETAG,
            "Content-Range": "bytes 0-3/17",
        },
    )
    got = s3.get_file("sample.txt", {"Range": ["bytes=0-3"]})
    assert got.status_code == 206
    assert got.content_length == 4
    assert got.extra_headers == {
        "Accept-Ranges": ["bytes"],
        "Content-Range": ["bytes 0-3/17"],
    }
    assert rsps.calls[0].request.headers["range"] == "bytes=0-3"


def test_get_file_missing_is_internal_error(s3, rsps):
    rsps.get(
        OBJECT_URL, status=404, body=_error_xml("NoSuchKey", "The specified key does not exist.")
    )
    with pytest.raises(APIError) as info:
        s3.get_file("sample.txt", None)
    assert info.value.status_code == 500


def test_create_presigned_url_query(s3):
    signature = s3.create_presigned_url("sample.txt", timedelta(seconds=1))
    query = parse_qs(signature)
    assert query["X-Amz-Algorithm"] == ["AWS4-HMAC-SHA256"]
    assert query["X-Amz-Expires"] == ["1"]
    assert query["X-Amz-SignedHeaders"] == ["host"]
    credential = query["X-Amz-Credential"][0]
    assert credential.startswith("placeholder/")
    assert credential.endswith("/eu-central-1/s3/aws4_request")
    assert re.fullmatch(r"\d{8}T\d{6}Z", query["X-Amz-Date"][0])
    assert re.fullmatch(r"[0-9a-f]{64}", query["X-Amz-Signature"][0])
    assert "?" not in signature


def test_create_presigned_url_accepts_seconds(s3):
    query = parse_qs(s3.create_presigned_url("sample.txt", 30))
    assert query["X-Amz-Expires"] == ["30"]


def test_create_presigned_url_rejects_long_expiration(s3):
    with pytest.raises(APIError) as info:
        s3.create_presigned_url("sample.txt", timedelta(days=8))
    assert info.value.status_code == 500


def test_presigned_success(s3, rsps):
    rsps.get(
        OBJECT_URL,
        body=CONTENT,
        headers={"Content-Type": "text", "Content-Length": "17", "ETag": ETAG},
    )
    signature = s3.create_presigned_url("sample.txt", timedelta(seconds=1))
    got = s3.get_file_with_presigned_url("sample.txt", signature, None)
    assert dataclasses.replace(got, body=None) == File(
        content_type="text",
        content_length=17,
        etag=ETAG,
        status_code=200,
        body=None,
        extra_headers={"Accept-Ranges": ["bytes"]},
    )
    assert got.body.read().decode() == "this is a sample\n"
    sent = urlsplit(rsps.calls[0].request.url)
    assert sent.path == f"/default/{ROOT}/sample.txt"
    assert sent.query == signature


def test_presigned_not_modified(s3, rsps):
    rsps.get(OBJECT_URL, status=304, headers={"ETag": ETAG})
    got = s3.get_file_with_presigned_url(
        "sample.txt", "X-Amz-Signature=abc", {"If-None-Match": [ETAG]}
    )
    assert dataclasses.replace(got, body=None) == File(
        content_type="",
        content_length=0,
        etag=ETAG,
        status_code=304,
        body=None,
        extra_headers={},
    )
    assert rsps.calls[0].request.headers["If-None-Match"] == ETAG


def test_presigned_partial_content(s3, rsps):
    rsps.get(
        OBJECT_URL,
        status=206,
        body=b"this",
        headers={"Content-Length": "4", "Content-Range": "bytes 0-3/17", "ETag": ETAG},
    )
    got = s3.get_file_with_presigned_url("sample.txt", "X-Amz-Signature=abc", None)
    assert got.status_code == 206
    assert got.content_length == 4
    assert got.extra_headers == {
        "Accept-Ranges": ["bytes"],
        "Content-Range": ["bytes 0-3/17"],
    }


def test_presigned_file_not_found(s3, rsps):
    rsps.get(
        f"{ENDPOINT}/default/{ROOT}/qwenmzxcxzcsadsad",
        status=404,
        body=_error_xml("NoSuchKey", "The specified key does not exist."),
    )
    with pytest.raises(APIError) as info:
        s3.get_file_with_presigned_url("qwenmzxcxzcsadsad", "X-Amz-Signature=abc", None)
    assert info.value.status_code == 404
    assert info.value.public_response() == {"message": "The specified key does not exist."}


def test_presigned_expired(s3, rsps):
    rsps.get(OBJECT_URL, status=403, body=_error_xml("AccessDenied", "Request has expired"))
    with pytest.raises(APIError) as info:
        s3.get_file_with_presigned_url("sample.txt", "X-Amz-Signature=abc", None)
    assert info.value.status_code == 403
    assert info.value.public_response() == {"message": "Request has expired"}


def test_presigned_content_length_out_of_range(s3, rsps):
    rsps.get(OBJECT_URL, body=b"", headers={"Content-Length": "4294967296"})
    with pytest.raises(APIError) as info:
        s3.get_file_with_presigned_url("sample.txt", "X-Amz-Signature=abc", None)
    assert info.value.status_code == 500
    assert "Content-Length" in str(info.value.cause)


def test_presigned_without_root_folder(rsps):
    storage = S3(ENDPOINT, "eu-central-1", "placeholder", "secret", "default", "", ENDPOINT)
    rsps.get(f"{ENDPOINT}/default/sample.txt", status=304)
    got = storage.get_file_with_presigned_url("sample.txt", "X-Amz-Signature=abc", None)
    assert got.status_code == 304
    assert urlsplit(rsps.calls[0].request.url).path == "/default/sample.txt"


def test_delete_file_sends_delete(s3, rsps):
    rsps.delete(OBJECT_URL, status=204)
    assert s3.delete_file("sample.txt") is None
    request = rsps.calls[0].request
    assert request.method == "DELETE"
    assert urlsplit(request.url).path == f"/default/{ROOT}/sample.txt"


def test_delete_file_failure(s3, rsps):
    rsps.delete(OBJECT_URL, status=403, body=_error_xml("AccessDenied", "Access Denied"))
    with pytest.raises(APIError) as info:
        s3.delete_file("sample.txt")
    assert info.value.status_code == 500


def test_list_files_trims_root(s3, rsps):
    body = (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<ListBucketResult xmlns="http://s3.amazonaws.com/doc/2006-03-01/">'
        "<Name>default</Name>"
        f"<Prefix>{ROOT}/</Prefix>"
        f"<Contents><Key>{ROOT}/sample.txt</Key><Size>17</Size></Contents>"
        f"<Contents><Key>{ROOT}/nested/s3_test.go</Key><Size>5</Size></Contents>"
        "</ListBucketResult>"
    )
    rsps.get(f"{ENDPOINT}/default", body=body)
    assert s3.list_files() == ["sample.txt", "nested/s3_test.go"]
    query = parse_qs(urlsplit(rsps.calls[0].request.url).query)
    assert query == {"prefix": [f"{ROOT}/"]}


def test_list_files_failure(s3, rsps):
    rsps.get(f"{ENDPOINT}/default", status=500, body="oops")
    with pytest.raises(APIError) as info:
        s3.list_files()
    assert info.value.status_code == 500


def test_parse_s3_error_xml(rsps):
    rsps.get("http://localhost:9000/x", status=404, body=_error_xml("NoSuchKey", "gone"))
    err = parse_s3_error(requests.get("http://localhost:9000/x"))
    assert err.status_code == 404
    assert err.public_response() == {"message": "gone"}


def test_parse_s3_error_not_xml(rsps):
    rsps.get("http://localhost:9000/x", status=502, body="bad gateway")
    err = parse_s3_error(requests.get("http://localhost:9000/x"))
    assert err.status_code == 500
    assert "problem parsing S3 error, status code 502: bad gateway" in str(err.cause)


def test_invalid_endpoint_raises():
    with pytest.raises(APIError) as info:
        S3("not a url", "eu-central-1", "placeholder", "secret", "default", ROOT, ENDPOINT)
    assert info.value.status_code == 500