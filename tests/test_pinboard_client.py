import httpx
import pytest

from markdrop.errors import PermanentDeliveryError, TransientDeliveryError
from markdrop.services.bookmarks import BookmarkPayload
from markdrop.services.pinboard import PinboardClient


TOKEN = "tester:0123456789ABCDEF"


def _client(handler, token=TOKEN):
    return PinboardClient(
        token,
        base_url="https://api.pinboard.test/v1",
        min_interval=0,
        transport=httpx.MockTransport(handler),
    )


def _json_handler(payload, status_code=200, requests=None, headers=None):
    def handler(request):
        if requests is not None:
            requests.append(request)
        return httpx.Response(status_code, json=payload, headers=headers)

    return handler


def test_check_duplicate_parses_existing_post():
    requests = []
    client = _client(
        _json_handler(
            {
                "date": "2025-11-02T08:15:00Z",
                "user": "tester",
                "posts": [
                    {
                        "href": "https://example.com/",
                        "description": "Example Domain",
                        "extended": "Reserved for documentation",
                        "tags": "reference iana",
                        "shared": "no",
                        "toread": "yes",
                        "time": "2025-11-02T08:15:00Z",
                    }
                ],
            },
            requests=requests,
        )
    )

    result = client.check_duplicate("https://example.com/")

    assert result.exists is True
    assert result.bookmark.title == "Example Domain"
    assert result.bookmark.tags == ("reference", "iana")
    assert result.bookmark.private is True
    assert result.bookmark.read_later is True
    assert result.bookmark.saved_at.year == 2025
    params = requests[0].url.params
    assert requests[0].url.path == "/v1/posts/get"
    assert params["url"] == "https://example.com/"
    assert params["auth_token"] == TOKEN
    assert params["format"] == "json"


def test_check_duplicate_without_posts_is_not_a_duplicate():
    client = _client(_json_handler({"date": "", "user": "tester", "posts": []}))

    result = client.check_duplicate("https://example.com/")

    assert result.exists is False
    assert result.bookmark is None


@pytest.mark.parametrize(
    "payload",
    [
        [{"popular": ["web"]}, {"recommended": ["docs", "reference"]}],
        {"popular": ["web"], "recommended": ["docs", "reference"]},
    ],
)
def test_tag_suggestions_accept_both_response_shapes(payload):
    client = _client(_json_handler(payload))

    suggestions = client.fetch_tag_suggestions("https://example.com/")

    assert suggestions.popular == ("web",)
    assert suggestions.recommended == ("docs", "reference")


def test_create_and_update_send_replace_flag():
    requests = []
    client = _client(_json_handler({"result_code": "done"}, requests=requests))
    payload = BookmarkPayload.from_dict(
        {
            "url": "https://example.com",
            "title": "Example",
            "notes": "Some notes",
            "tags": ["python", "tools"],
            "private": True,
            "read_later": False,
        }
    )

    client.create(payload)
    client.update(payload)

    create_params, update_params = (request.url.params for request in requests)
    assert requests[0].url.path == "/v1/posts/add"
    assert create_params["replace"] == "no"
    assert update_params["replace"] == "yes"
    assert create_params["description"] == "Example"
    assert create_params["extended"] == "Some notes"
    assert create_params["tags"] == "python tools"
    assert create_params["shared"] == "no"
    assert create_params["toread"] == "no"


def test_rejected_post_is_permanent():
    client = _client(_json_handler({"result_code": "item already exists"}))
    payload = BookmarkPayload.from_dict({"url": "example.com", "title": "Example"})

    with pytest.raises(PermanentDeliveryError, match="item already exists"):
        client.create(payload)


@pytest.mark.parametrize("status_code", [500, 502, 503])
def test_server_errors_are_transient(status_code):
    client = _client(_json_handler({}, status_code=status_code))

    with pytest.raises(TransientDeliveryError, match=str(status_code)):
        client.check_duplicate("https://example.com/")


def test_rate_limit_is_transient_with_retry_after():
    client = _client(_json_handler({}, status_code=429, headers={"Retry-After": "90"}))

    with pytest.raises(TransientDeliveryError) as excinfo:
        client.fetch_tag_suggestions("https://example.com/")

    assert excinfo.value.retry_after == 90


@pytest.mark.parametrize("status_code", [401, 403])
def test_auth_failures_are_permanent(status_code):
    client = _client(_json_handler({}, status_code=status_code))

    with pytest.raises(PermanentDeliveryError, match="authentication failed"):
        client.check_duplicate("https://example.com/")


def test_network_errors_and_timeouts_are_transient():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    def stall(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    with pytest.raises(TransientDeliveryError, match="network error"):
        _client(refuse).check_duplicate("https://example.com/")
    with pytest.raises(TransientDeliveryError, match="timed out"):
        _client(stall).check_duplicate("https://example.com/")


def test_unreadable_response_is_transient():
    client = _client(lambda request: httpx.Response(200, text="<html>maintenance"))

    with pytest.raises(TransientDeliveryError, match="invalid API response"):
        client.check_duplicate("https://example.com/")


def test_missing_token_fails_without_network():
    requests = []
    client = _client(_json_handler({}, requests=requests), token="")

    assert client.configured is False
    with pytest.raises(PermanentDeliveryError, match="token"):
        client.check_duplicate("https://example.com/")
    assert requests == []


def test_fetch_title_prefers_open_graph_title():
    html = (
        "<html><head><title>Plain title</title>"
        '<meta property="og:title" content="  Shared   title "></head></html>'
    )
    client = _client(
        lambda request: httpx.Response(
            200, text=html, headers={"Content-Type": "text/html; charset=utf-8"}
        )
    )

    assert client.fetch_title("https://example.com/") == "Shared title"


def test_fetch_title_returns_none_for_error_pages():
    client = _client(
        lambda request: httpx.Response(404, text="<title>Not found</title>")
    )

    assert client.fetch_title("https://example.com/missing") is None


def test_fetch_title_network_failure_is_transient():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransientDeliveryError):
        _client(refuse).fetch_title("https://example.com/")
