import httpx
import pytest

from conftest import BASE_URL, TOKEN, run, stream_bytes
from moodle_actions.actions.file_proxy import (
    FileProxy,
    FileProxyError,
    build_proxy_headers,
    inline_disposition,
    is_previewable,
    parse_disposition_filename,
)
from moodle_actions.config.models import MoodleSettings

FILE_URL = f"{BASE_URL}/webservice/pluginfile.php/12/assignsubmission_file/submission_files/3/essay.pdf"


class Upstream:
    """Records the forwarded request and answers with a canned response."""

    def __init__(self, status_code=200, headers=None, content=b"%PDF-1.7 data"):
        self.status_code = status_code
        self.headers = headers or {}
        self.content = content
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, headers=self.headers, content=stream_bytes(self.content))


def open_file(upstream, url=FILE_URL, range_header=None, settings=None):
    settings = settings or MoodleSettings(base_url=BASE_URL, token=TOKEN)

    async def scenario():
        async with FileProxy(settings, transport=httpx.MockTransport(upstream)) as proxy:
            proxied = await proxy.open(url, range_header)
            body = b"".join([chunk async for chunk in proxied.iter_bytes()])
            return proxied, body

    return run(scenario())


@pytest.mark.parametrize(
    "content_type, expected",
    [
        ("application/pdf", True),
        ("text/plain; charset=utf-8", True),
        ("text/x-python", True),
        ("image/png", True),
        ("IMAGE/JPEG", True),
        ("application/json", True),
        ("application/zip", False),
        ("application/vnd.openxmlformats-officedocument.wordprocessingml.document", False),
        ("", False),
        (None, False),
    ],
)
def test_is_previewable(content_type, expected):
    assert is_previewable(content_type) is expected


@pytest.mark.parametrize(
    "header, expected",
    [
        ('attachment; filename="essay final.pdf"', "essay final.pdf"),
        ("attachment; filename=essay.pdf", "essay.pdf"),
        ("attachment; filename*=UTF-8''r%C3%A9sum%C3%A9.pdf", "résumé.pdf"),
        ('attachment; filename="fallback.pdf"; filename*=UTF-8\'\'r%C3%A9sum%C3%A9.pdf', "résumé.pdf"),
        ("inline", None),
        (None, None),
    ],
)
def test_parse_disposition_filename(header, expected):
    assert parse_disposition_filename(header) == expected


def test_inline_disposition():
    assert inline_disposition(None) == "inline"
    assert inline_disposition("essay.pdf") == 'inline; filename="essay.pdf"'
    assert inline_disposition("résumé.pdf") == "inline; filename*=UTF-8''r%C3%A9sum%C3%A9.pdf"


def test_image_without_disposition_is_plain_inline():
    headers = build_proxy_headers({"Content-Type": "image/png"})

    assert headers["Content-Disposition"] == "inline"
    assert headers["Accept-Ranges"] == "bytes"
    assert "Content-Range" not in headers


def test_previewable_attachment_is_forced_inline_keeping_name():
    headers = build_proxy_headers(
        {"Content-Type": "application/pdf", "Content-Disposition": "attachment; filename*=UTF-8''rapport%20final.pdf"}
    )

    assert headers["Content-Disposition"] == 'inline; filename="rapport final.pdf"'


def test_download_types_keep_upstream_disposition():
    disposition = 'attachment; filename="archive.zip"'
    headers = build_proxy_headers({"Content-Type": "application/zip", "Content-Disposition": disposition})

    assert headers["Content-Disposition"] == disposition


def test_missing_content_type_defaults_to_octet_stream():
    headers = build_proxy_headers({})

    assert headers["Content-Type"] == "application/octet-stream"
    assert "Content-Disposition" not in headers


def test_upstream_accept_ranges_is_adopted():
    headers = build_proxy_headers({"Content-Type": "application/pdf", "Accept-Ranges": "none"})

    assert headers["Accept-Ranges"] == "none"


def test_full_response_is_streamed_with_token_upstream():
    upstream = Upstream(
        headers={
            "Content-Type": "application/pdf",
            "Content-Disposition": 'attachment; filename="essay.pdf"',
            "Content-Length": "13",
        }
    )

    proxied, body = open_file(upstream)

    assert proxied.status_code == 200
    assert body == b"%PDF-1.7 data"
    assert proxied.headers["Content-Disposition"] == 'inline; filename="essay.pdf"'
    assert proxied.headers["Content-Length"] == "13"
    assert proxied.headers["Accept-Ranges"] == "bytes"

    forwarded = upstream.requests[0]
    assert forwarded.url.params["token"] == TOKEN
    assert forwarded.url.path == httpx.URL(FILE_URL).path
    assert "range" not in forwarded.headers


def test_body_is_relayed_chunk_by_chunk():
    upstream = Upstream(headers={"Content-Type": "application/zip"}, content=b"0123456789")

    async def scenario():
        settings = MoodleSettings(base_url=BASE_URL, token=TOKEN)
        async with FileProxy(settings, transport=httpx.MockTransport(upstream)) as proxy:
            proxied = await proxy.open(FILE_URL)
            return [chunk async for chunk in proxied.iter_bytes()]

    chunks = run(scenario())

    assert chunks == [b"0123", b"4567", b"89"]


def test_partial_content_is_forwarded_unchanged():
    upstream = Upstream(
        status_code=206,
        headers={
            "Content-Type": "application/pdf",
            "Content-Range": "bytes 0-3/13",
            "Content-Length": "4",
            "Accept-Ranges": "bytes",
        },
        content=b"%PDF",
    )

    proxied, body = open_file(upstream, range_header="bytes=0-3")

    assert proxied.status_code == 206
    assert proxied.headers["Content-Range"] == "bytes 0-3/13"
    assert proxied.headers["Content-Length"] == "4"
    assert body == b"%PDF"
    assert upstream.requests[0].headers["range"] == "bytes=0-3"


@pytest.mark.parametrize("status_code", [403, 404, 500])
def test_upstream_errors_carry_status(status_code):
    upstream = Upstream(status_code=status_code, content=b"nope")

    with pytest.raises(FileProxyError) as excinfo:
        open_file(upstream)

    assert excinfo.value.status_code == status_code


@pytest.mark.parametrize(
    "url",
    [
        "https://evil.example.com/webservice/pluginfile.php/1/file.pdf",
        "http://moodle.example.edu/webservice/pluginfile.php/1/file.pdf",
        "ftp://moodle.example.edu/file.pdf",
        "not a url",
    ],
)
def test_token_is_never_sent_off_site(url):
    upstream = Upstream()

    with pytest.raises(FileProxyError) as excinfo:
        open_file(upstream, url=url)

    assert excinfo.value.status_code == 400
    assert upstream.requests == []


def test_missing_token_is_a_configuration_error():
    upstream = Upstream()

    with pytest.raises(FileProxyError) as excinfo:
        open_file(upstream, settings=MoodleSettings(base_url=BASE_URL, token=None))

    assert excinfo.value.status_code == 500
    assert upstream.requests == []
