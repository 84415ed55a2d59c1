"""
Inventory Query Client Tests

HTTP traffic is mocked at the requests.Session level; fan-out and merge
behaviour is exercised with fake account sessions.
"""

import threading
import time
from unittest.mock import MagicMock, patch

import pytest
import requests


def _response(status_code=200, payload=None):
    response = MagicMock()
    response.status_code = status_code
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload
    return response


def _token_account(**overrides):
    from tagsign.inventory.client import InventoryAccount

    values = {"account_id": "5678", "oauth2_token": "refresh-abc", "api_url": "https://us-4.rightscale.com"}
    values.update(overrides)
    return InventoryAccount(**values)


def _password_account(**overrides):
    from tagsign.inventory.client import InventoryAccount

    values = {"account_id": "1234", "email": "ops@example.com", "password": "hunter2"}
    values.update(overrides)
    return InventoryAccount(**values)


# === Accounts ===

class TestInventoryAccount:

    def test_from_config(self, autosign_config):
        from tagsign.inventory.client import InventoryAccount

        accounts = [InventoryAccount.from_config(s) for s in autosign_config.accounts]

        assert accounts[0].account_id == "1234"
        assert accounts[0].email == "ops@example.com"
        assert not accounts[0].uses_token
        assert accounts[0].api_url == "https://my.rightscale.com"
        assert accounts[1].uses_token
        assert accounts[1].api_url == "https://us-4.rightscale.com"

    def test_repr_hides_credentials(self):
        text = repr(_password_account(oauth2_token="refresh-abc"))
        assert "hunter2" not in text
        assert "refresh-abc" not in text

    def test_account_href(self):
        assert _password_account().account_href == "/api/accounts/1234"


# === Token exchange ===

class TestGetAccessToken:

    def test_success(self):
        from tagsign.inventory.client import get_access_token

        http = MagicMock()
        http.post.return_value = _response(200, {"access_token": "access-xyz", "expires_in": 7200})

        assert get_access_token(_token_account(), http=http, timeout=15) == "access-xyz"

        args, kwargs = http.post.call_args
        assert args[0] == "https://us-4.rightscale.com/api/oauth2"
        assert kwargs["data"] == {"grant_type": "refresh_token", "refresh_token": "refresh-abc"}
        assert kwargs["timeout"] == 15

    @patch("requests.Session.post")
    def test_uses_standard_session(self, mock_post):
        from tagsign.inventory.client import get_access_token

        mock_post.return_value = _response(200, {"access_token": "access-xyz"})

        assert get_access_token(_token_account()) == "access-xyz"
        mock_post.assert_called_once()

    @pytest.mark.parametrize("response", [
        _response(401, {"error": "invalid_grant"}),
        _response(500, None),
        _response(200, {"token_type": "bearer"}),
        _response(200, {"access_token": ""}),
        _response(200, ValueError("not json")),
    ])
    def test_failures(self, response):
        from tagsign.errors import TokenExchangeFailedError
        from tagsign.inventory.client import get_access_token

        http = MagicMock()
        http.post.return_value = response

        with pytest.raises(TokenExchangeFailedError) as exc_info:
            get_access_token(_token_account(), http=http)
        assert exc_info.value.code == "TS_INVENTORY_TOKEN_EXCHANGE_FAILED"
        assert "refresh-abc" not in exc_info.value.message

    def test_transport_error(self):
        from tagsign.errors import TokenExchangeFailedError
        from tagsign.inventory.client import get_access_token

        http = MagicMock()
        http.post.side_effect = requests.exceptions.ConnectTimeout()

        with pytest.raises(TokenExchangeFailedError) as exc_info:
            get_access_token(_token_account(), http=http)
        assert "ConnectTimeout" in exc_info.value.message


# === Account sessions ===

class TestAccountSession:

    def test_missing_credentials_fail_before_network(self):
        from tagsign.errors import MissingCredentialsError
        from tagsign.inventory.client import AccountSession

        http = MagicMock()
        with pytest.raises(MissingCredentialsError):
            AccountSession.login(_password_account(password=None), http=http)
        http.post.assert_not_called()

    def test_token_takes_precedence(self):
        from tagsign.inventory.client import AccountSession

        http = MagicMock()
        http.headers = {}
        http.post.return_value = _response(200, {"access_token": "access-xyz"})

        account = _token_account(email="ops@example.com", password="hunter2")
        AccountSession.login(account, http=http)

        assert http.post.call_count == 1
        assert http.post.call_args[0][0].endswith("/api/oauth2")
        assert http.headers["Authorization"] == "Bearer access-xyz"

    def test_password_login(self):
        from tagsign.inventory.client import AccountSession

        http = MagicMock()
        http.post.return_value = _response(204)

        session = AccountSession.login(_password_account(), http=http)

        args, kwargs = http.post.call_args
        assert args[0] == "https://my.rightscale.com/api/session"
        assert kwargs["data"]["account_href"] == "/api/accounts/1234"
        assert session.account.account_id == "1234"

    def test_password_login_rejected(self):
        from tagsign.errors import InventoryQueryError
        from tagsign.inventory.client import AccountSession

        http = MagicMock()
        http.post.return_value = _response(403)

        with pytest.raises(InventoryQueryError) as exc_info:
            AccountSession.login(_password_account(), http=http)
        assert "HTTP 403" in exc_info.value.message
        assert "hunter2" not in exc_info.value.message

    def test_by_tag_request(self):
        from tagsign.inventory.client import AccountSession

        http = MagicMock()
        http.post.return_value = _response(200, [])
        session = AccountSession(_password_account(), http, search_timeout=30)

        session.by_tag(["nd:auth=eng"], "nd:auth")

        args, kwargs = http.post.call_args
        assert args[0] == "https://my.rightscale.com/api/tags/by_tag"
        assert kwargs["data"] == [
            ("resource_type", "instances"),
            ("include_tags_with_prefix", "nd:auth"),
            ("tags[]", "nd:auth=eng"),
        ]
        assert kwargs["timeout"] == 30

    def test_tag_names_flattens_resources(self):
        from tagsign.inventory.client import AccountSession

        http = MagicMock()
        http.post.return_value = _response(200, [
            {"tags": [{"name": "nd:auth=eng"}], "links": []},
            {"tags": [{"name": "nd:auth=prod"}, {"name": "nd:auth=eng"}]},
        ])
        session = AccountSession(_password_account(), http)

        assert session.tag_names(["nd:auth"], "nd:auth") == ["nd:auth=eng", "nd:auth=prod", "nd:auth=eng"]

    @pytest.mark.parametrize("response", [
        _response(500, None),
        _response(200, {"not": "a list"}),
        _response(200, ["not a resource"]),
        _response(200, [{"tags": [{"value": "no name"}]}]),
        _response(200, ValueError("not json")),
    ])
    def test_bad_search_responses(self, response):
        from tagsign.errors import InventoryQueryError
        from tagsign.inventory.client import AccountSession

        http = MagicMock()
        http.post.return_value = response
        session = AccountSession(_password_account(), http)

        with pytest.raises(InventoryQueryError):
            session.tag_names(["nd:auth"], "nd:auth")

    def test_search_transport_error(self):
        from tagsign.errors import InventoryQueryError
        from tagsign.inventory.client import AccountSession

        http = MagicMock()
        http.post.side_effect = requests.exceptions.ReadTimeout()
        session = AccountSession(_password_account(), http)

        with pytest.raises(InventoryQueryError) as exc_info:
            session.by_tag(["nd:auth"], "nd:auth")
        assert "ReadTimeout" in exc_info.value.message


# === Multi-account client ===

class TestTagQueryClient:

    def test_search_arguments(self, fake_sessions):
        from tagsign.inventory.client import TagQueryClient

        factory = fake_sessions({"1234": ["ns:p=1"]})
        client = TagQueryClient([_password_account()], session_factory=factory)

        client.get_tags_by_tag("ns:p=1")
        assert factory.sessions["1234"].calls == [(["ns:p=1"], "ns:p")]

        client.get_tags_by_tag("ns")
        assert factory.sessions["1234"].calls[-1] == (["ns"], "ns:")

    def test_dedup(self, fake_sessions):
        from tagsign.inventory.client import TagQueryClient

        factory = fake_sessions({"1234": ["ns:p=2", "ns:p=1", "ns:p=1"]})
        client = TagQueryClient([_password_account()], session_factory=factory)

        assert client.get_tags_by_tag("ns:p") == ["ns:p=1", "ns:p=2"]
        assert client.get_tags_by_tag("ns:p", dedup=False) == ["ns:p=1", "ns:p=1", "ns:p=2"]

    def test_merge_across_accounts(self, fake_sessions):
        from tagsign.inventory.client import TagQueryClient

        factory = fake_sessions({
            "1234": ["nd:auth=prod", "nd:auth=eng"],
            "5678": ["nd:auth=eng", "nd:auth=dev"],
        })
        client = TagQueryClient([_password_account(), _token_account()], session_factory=factory)

        assert client.get_tags_by_tag("nd:auth") == ["nd:auth=dev", "nd:auth=eng", "nd:auth=prod"]
        assert client.get_tags_by_tag("nd:auth", dedup=False) == [
            "nd:auth=dev", "nd:auth=eng", "nd:auth=eng", "nd:auth=prod",
        ]

    def test_sessions_are_memoized(self, fake_sessions):
        from tagsign.inventory.client import TagQueryClient

        factory = fake_sessions({"1234": [], "5678": []})
        client = TagQueryClient([_password_account(), _token_account()], session_factory=factory)

        for _ in range(3):
            client.get_tags_by_tag("nd:auth")

        assert sorted(factory.logins) == ["1234", "5678"]
        assert factory.search_count == 6

    def test_concurrent_first_use_logs_in_once(self, fake_sessions):
        from tagsign.inventory.client import TagQueryClient

        factory = fake_sessions({"1234": []})

        def _slow_login(account):
            time.sleep(0.05)
            return factory(account)

        account = _password_account()
        client = TagQueryClient([account], session_factory=_slow_login)
        start = threading.Barrier(8)
        sessions = []

        def _worker():
            start.wait()
            sessions.append(client.get_session(account))

        threads = [threading.Thread(target=_worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(5)

        assert factory.logins == ["1234"]
        assert len(sessions) == 8
        assert all(session is sessions[0] for session in sessions)

    def test_account_failure_propagates(self, fake_sessions):
        from tagsign.errors import InventoryQueryError
        from tagsign.inventory.client import TagQueryClient

        factory = fake_sessions(
            {"1234": ["nd:auth=eng"]},
            errors={"5678": InventoryQueryError("5678", "HTTP 500")},
        )
        client = TagQueryClient([_password_account(), _token_account()], session_factory=factory)

        with pytest.raises(InventoryQueryError):
            client.get_tags_by_tag("nd:auth")

    def test_no_accounts(self):
        from tagsign.inventory.client import TagQueryClient

        assert TagQueryClient([]).get_tags_by_tag("nd:auth") == []

    def test_close_closes_sessions(self, fake_sessions):
        from tagsign.inventory.client import TagQueryClient

        factory = fake_sessions({"1234": []})
        client = TagQueryClient([_password_account()], session_factory=factory)
        client.get_tags_by_tag("nd:auth")
        client.close()

        assert factory.sessions["1234"].closed
        client.get_tags_by_tag("nd:auth")
        assert factory.logins == ["1234", "1234"]

    def test_from_config(self, autosign_config, fake_sessions):
        from tagsign.inventory.client import TagQueryClient

        client = TagQueryClient.from_config(autosign_config, session_factory=fake_sessions({}), max_workers=2)

        assert [a.account_id for a in client.accounts] == ["1234", "5678"]
        assert client.max_workers == 2
