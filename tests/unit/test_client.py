"""
Tests for contentbridge.sync.client module.
"""

from typing import Any
from unittest.mock import Mock

import pytest
import requests

from contentbridge.core.config import RemoteConfig
from contentbridge.core.errors import AuthError, ConfigError
from contentbridge.sync.client import (
    ExportAuthError,
    ExportClient,
    ExportPayloadError,
    ExportTransportError,
    build_post_types_endpoint,
)

from conftest import build_record_dict

POSTS_URL = "https://old.example/wp-json/content-migrate/v1/posts"


def make_response(mocker: Any, status: int = 200, payload: Any = None, text: str = "") -> Mock:
    response = mocker.Mock()
    response.status_code = status
    response.text = text
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def http(mocker: Any) -> Mock:
    return mocker.Mock(spec=requests.Session)


@pytest.fixture
def client(http: Mock) -> ExportClient:
    return ExportClient(POSTS_URL, "tok", session=http)


class TestEndpoints:
    @pytest.mark.parametrize(
        "posts_url",
        [
            POSTS_URL,
            POSTS_URL + "/",
            POSTS_URL + "?count=5",
        ],
    )
    def test_post_types_sibling(self, posts_url: str) -> None:
        assert (
            build_post_types_endpoint(posts_url.split("?")[0])
            == "https://old.example/wp-json/content-migrate/v1/post-types"
        )

    def test_requires_url_and_token(self) -> None:
        with pytest.raises(ConfigError):
            ExportClient("", "tok")
        with pytest.raises(ConfigError):
            ExportClient.from_config(RemoteConfig(posts_url=POSTS_URL))


class TestFetchPage:
    def test_sends_cursor_and_bearer(self, mocker: Any, http: Mock, client: ExportClient) -> None:
        http.get.return_value = make_response(
            mocker, payload={"count": 2, "startID": 0, "total": 12, "records": [build_record_dict(1), build_record_dict(2)]}
        )

        page = client.fetch_page("post", "publish", 0, 5)

        assert page.ids == [1, 2]
        assert page.total == 12
        _, kwargs = http.get.call_args
        assert kwargs["params"] == {"count": 5, "startID": 0, "post_type": "post", "status": "publish"}
        assert kwargs["headers"]["Authorization"] == "Bearer tok"
        assert kwargs["timeout"] == 30.0

    def test_forbidden_is_auth_error(self, mocker: Any, http: Mock, client: ExportClient) -> None:
        http.get.return_value = make_response(mocker, status=403, text='{"code":"forbidden"}')
        with pytest.raises(ExportAuthError) as excinfo:
            client.fetch_page("post", "publish", 0, 5)
        assert isinstance(excinfo.value, AuthError)

    def test_server_error_is_transport(self, mocker: Any, http: Mock, client: ExportClient) -> None:
        http.get.return_value = make_response(mocker, status=500, text="oops")
        with pytest.raises(ExportTransportError):
            client.fetch_page("post", "publish", 0, 5)

    def test_timeout_is_transport(self, http: Mock, client: ExportClient) -> None:
        http.get.side_effect = requests.Timeout("slow")
        with pytest.raises(ExportTransportError, match="timed out"):
            client.fetch_page("post", "publish", 0, 5)

    def test_invalid_json(self, mocker: Any, http: Mock, client: ExportClient) -> None:
        http.get.return_value = make_response(mocker, payload=ValueError("not json"))
        with pytest.raises(ExportPayloadError):
            client.fetch_page("post", "publish", 0, 5)

    def test_missing_records(self, mocker: Any, http: Mock, client: ExportClient) -> None:
        http.get.return_value = make_response(mocker, payload={"count": 0})
        with pytest.raises(ExportPayloadError):
            client.fetch_page("post", "publish", 0, 5)

    def test_ordering_violation(self, mocker: Any, http: Mock, client: ExportClient) -> None:
        http.get.return_value = make_response(
            mocker, payload={"records": [build_record_dict(8), build_record_dict(7)]}
        )
        with pytest.raises(ExportPayloadError):
            client.fetch_page("post", "publish", 5, 5)

    def test_record_at_or_below_cursor(self, mocker: Any, http: Mock, client: ExportClient) -> None:
        http.get.return_value = make_response(mocker, payload={"records": [build_record_dict(5)]})
        with pytest.raises(ExportPayloadError):
            client.fetch_page("post", "publish", 5, 5)

    def test_oversized_page(self, mocker: Any, http: Mock, client: ExportClient) -> None:
        http.get.return_value = make_response(
            mocker, payload={"records": [build_record_dict(i) for i in range(1, 4)]}
        )
        with pytest.raises(ExportPayloadError):
            client.fetch_page("post", "publish", 0, 2)


class TestFetchTypes:
    def test_types(self, mocker: Any, http: Mock, client: ExportClient) -> None:
        http.get.return_value = make_response(
            mocker, payload={"post_types": [{"slug": "post", "label": "Posts"}, {"slug": "book", "label": "Books"}]}
        )

        types = client.fetch_types()

        assert [t.slug for t in types] == ["post", "book"]
        args, kwargs = http.get.call_args
        assert args[0].endswith("/post-types")
        assert kwargs["timeout"] == 20.0

    def test_missing_list(self, mocker: Any, http: Mock, client: ExportClient) -> None:
        http.get.return_value = make_response(mocker, payload={"types": []})
        with pytest.raises(ExportPayloadError):
            client.fetch_types()
