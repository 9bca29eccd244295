import json
from datetime import datetime, timedelta, timezone

import pytest
from typer.testing import CliRunner

from wscli import __version__
from wscli.auth.models import TokenRecord
from wscli.auth.storage import FileTokenStore
from wscli.cli.commands import _parse_query, app
from wscli.client.errors import InvalidRequestError
from wscli.config.loader import load_config

runner = CliRunner()


@pytest.fixture
def file_tokens(_isolated_home, monkeypatch) -> FileTokenStore:
    monkeypatch.setenv("WSCLI_AUTH__KEYRING", "false")
    return FileTokenStore(_isolated_home / "tokens")


def _record(token: str) -> TokenRecord:
    return TokenRecord(token, datetime.now(timezone.utc) + timedelta(hours=1), "refresh")


def test_version() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_auth_list_and_switch(file_tokens) -> None:
    file_tokens.put("work", _record("a"))
    file_tokens.put("home", _record("b"))

    result = runner.invoke(app, ["auth", "list"])
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["current"] == "default"
    assert [a["id"] for a in data["accounts"]] == ["home", "work"]

    result = runner.invoke(app, ["auth", "switch", "work"])
    assert result.exit_code == 0
    assert load_config().auth.current_account == "work"

    data = json.loads(runner.invoke(app, ["auth", "list"]).stdout)
    assert data["current"] == "work"
    assert {"id": "work", "current": True} in data["accounts"]


def test_switch_to_unknown_account_fails(file_tokens) -> None:
    result = runner.invoke(app, ["auth", "switch", "ghost"])
    assert result.exit_code == 1
    assert json.loads(result.stdout)["error"]["code"] == "InvalidRequest"


def test_auth_status_and_logout(file_tokens) -> None:
    file_tokens.put("work", _record("a"))
    file_tokens.put("home", _record("b"))

    status = json.loads(runner.invoke(app, ["auth", "status", "--account", "work"]).stdout)
    assert status["authenticated"] is True
    assert status["storage"] == "file"

    result = runner.invoke(app, ["auth", "logout", "--account", "work"])
    assert result.exit_code == 0
    assert json.loads(result.stdout) == {"status": "logged_out", "account": "work"}
    assert file_tokens.list() == {"home"}

    # Logging out again is not an error.
    assert runner.invoke(app, ["auth", "logout", "--account", "work"]).exit_code == 0


def test_request_without_login_reports_json_error(file_tokens) -> None:
    result = runner.invoke(app, ["request", "gmail", "GET", "/users/me/profile"])
    assert result.exit_code == 1
    assert json.loads(result.stdout)["error"]["code"] == "AuthenticationFailed"


def test_request_rejects_bad_body(file_tokens) -> None:
    result = runner.invoke(app, ["request", "gmail", "POST", "/users/me/labels", "--body", "{nope"])
    assert result.exit_code == 1
    assert json.loads(result.stdout)["error"]["code"] == "InvalidRequest"


def test_request_rejects_unknown_service(file_tokens) -> None:
    result = runner.invoke(app, ["request", "youtube", "GET", "/x"])
    assert result.exit_code == 1
    assert json.loads(result.stdout)["error"]["code"] == "InvalidRequest"


def test_batch_requires_batch_capable_service(file_tokens) -> None:
    result = runner.invoke(app, ["batch", "docs", "-"], input="[]")
    assert result.exit_code == 1
    assert json.loads(result.stdout)["error"]["code"] == "InvalidRequest"


def test_batch_rejects_more_than_one_hundred(file_tokens) -> None:
    file_tokens.put("default", _record("a"))
    entries = [{"id": str(i), "method": "GET", "path": f"/users/me/messages/{i}"} for i in range(101)]
    result = runner.invoke(app, ["batch", "gmail", "-"], input=json.dumps(entries))
    assert result.exit_code == 1
    error = json.loads(result.stdout)["error"]
    assert error["code"] == "InvalidRequest"
    assert "101" in error["message"]


def test_batch_input_must_be_array(file_tokens, tmp_path) -> None:
    source = tmp_path / "batch.json"
    source.write_text('{"id": "a"}')
    result = runner.invoke(app, ["batch", "gmail", str(source)])
    assert result.exit_code == 1
    assert json.loads(result.stdout)["error"]["code"] == "InvalidRequest"


def test_parse_query_pairs() -> None:
    assert _parse_query(None) is None
    assert _parse_query(["q=is:unread", "labelIds=INBOX", "labelIds=STARRED"]) == {
        "q": "is:unread",
        "labelIds": ["INBOX", "STARRED"],
    }
    with pytest.raises(InvalidRequestError):
        _parse_query(["novalue"])
