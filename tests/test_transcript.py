import pytest

from notarybridge.notary.transcript import MessageKind, parse_http_message
from notarybridge.shared.errors import MalformedTranscript

from .conftest import RECV, RESPONSE_BODY, SENT


def test_parses_request_without_body():
    message = parse_http_message(SENT, MessageKind.REQUEST)

    assert message.start_line == "GET /users/aaa/credit-score HTTP/1.1\r\n"
    assert message.header_pairs() == [
        ("Host", "example.com"),
        ("secret", "test_secret"),
        ("Connection", "close"),
    ]
    assert message.body == b""


def test_parses_response_with_content_length():
    message = parse_http_message(RECV, "response")

    assert message.start_line == "HTTP/1.1 200 OK\r\n"
    assert ("Content-Type", "application/json") in message.header_pairs()
    assert message.body == RESPONSE_BODY


def test_request_with_body():
    buffer = b"POST /api HTTP/1.1\r\nHost: a\r\nContent-Length: 7\r\n\r\n{\"x\":1}"
    message = parse_http_message(buffer, MessageKind.REQUEST)
    assert message.body == b'{"x":1}'


def test_chunked_response_is_decoded():
    buffer = (
        b"HTTP/1.1 200 OK\r\n"
        b"Transfer-Encoding: chunked\r\n"
        b"\r\n"
        b"5\r\nhello\r\n"
        b"6;ext=1\r\n world\r\n"
        b"0\r\n"
        b"X-Trailer: done\r\n"
        b"\r\n"
    )
    message = parse_http_message(buffer, MessageKind.RESPONSE)

    assert message.body_chunks == (b"hello", b" world")
    assert message.body == b"hello world"


def test_duplicate_headers_keep_order():
    buffer = (
        b"HTTP/1.1 200 OK\r\n"
        b"Set-Cookie: a=1\r\n"
        b"Set-Cookie: b=2\r\n"
        b"Content-Length: 0\r\n"
        b"\r\n"
    )
    message = parse_http_message(buffer, MessageKind.RESPONSE)

    assert message.headers == ("Set-Cookie", "a=1", "Set-Cookie", "b=2", "Content-Length", "0")


def test_close_delimited_response_body():
    buffer = b"HTTP/1.0 200 OK\r\nServer: x\r\n\r\nplain text"
    message = parse_http_message(buffer, MessageKind.RESPONSE)
    assert message.body == b"plain text"


def test_no_content_response_has_no_body():
    message = parse_http_message(b"HTTP/1.1 204 No Content\r\nServer: x\r\n\r\n", MessageKind.RESPONSE)
    assert message.body_chunks == ()


@pytest.mark.parametrize(
    "buffer, kind",
    [
        (b"GET / HTTP/1.1\r\nHost: a\r\n", MessageKind.REQUEST),
        (b"HTTP/1.1 200 OK\r\nContent-Length: 10\r\n\r\nshort", MessageKind.RESPONSE),
        (b"HTTP/1.1 200 OK\r\nContent-Length: 2\r\n\r\ntoo long", MessageKind.RESPONSE),
        (b"HTTP/1.1 200 OK\r\nContent-Length: 2\r\nContent-Length: 3\r\n\r\nab", MessageKind.RESPONSE),
        (b"HTTP/1.1 200 OK\r\nContent-Length: x\r\n\r\n", MessageKind.RESPONSE),
        (b"HTTP/1.1 200 OK\r\nTransfer-Encoding: chunked\r\n\r\n5\r\nhel", MessageKind.RESPONSE),
        (b"HTTP/1.1 200 OK\r\nTransfer-Encoding: chunked\r\n\r\nzz\r\n", MessageKind.RESPONSE),
        (b"HTTP/1.1 200 OK\r\nTransfer-Encoding: chunked\r\n\r\n0\r\n\r\nextra", MessageKind.RESPONSE),
        (b"HTTP/1.1 204 No Content\r\n\r\nbody", MessageKind.RESPONSE),
        (b"GET / HTTP/1.1\r\nHost: a\r\n\r\nunexpected", MessageKind.REQUEST),
        (b"NOT A STATUS LINE\r\n\r\n", MessageKind.RESPONSE),
        (b"GET /\r\n\r\n", MessageKind.REQUEST),
        (b"GET / HTTP/1.1\r\nno colon here\r\n\r\n", MessageKind.REQUEST),
        (b"GET / HTTP/1.1\r\nbad name: x\r\n\r\n", MessageKind.REQUEST),
    ],
)
def test_malformed_messages_are_rejected(buffer, kind):
    with pytest.raises(MalformedTranscript) as excinfo:
        parse_http_message(buffer, kind)
    assert f"Could not parse {kind.value.upper()}" in str(excinfo.value)


def test_request_parser_rejects_response():
    with pytest.raises(MalformedTranscript):
        parse_http_message(RECV, MessageKind.REQUEST)
