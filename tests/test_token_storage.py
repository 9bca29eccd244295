import os
import stat
import sys
from datetime import datetime, timezone

import keyring
import keyring.errors
import pytest
from keyring.backend import KeyringBackend
from keyring.backends import null

from wscli.auth.models import TokenRecord
from wscli.auth.storage import (
    BackendUnavailableError,
    FallbackTokenStore,
    FileTokenStore,
    KeyringTokenStore,
    StoreCorruptError,
    decode_account_id,
    encode_account_id,
)


def _record(token: str = "access-1", refresh: str | None = "refresh-1") -> TokenRecord:
    return TokenRecord(
        access_token=token,
        refresh_token=refresh,
        expires_at=datetime(2030, 1, 1, 12, 30, tzinfo=timezone.utc),
        scopes=frozenset({"https://www.googleapis.com/auth/drive", "https://www.googleapis.com/auth/gmail.modify"}),
    )


class MemoryKeyring(KeyringBackend):
    priority = 1

    def __init__(self) -> None:
        super().__init__()
        self.entries: dict[tuple[str, str], str] = {}

    def get_password(self, service, username):
        return self.entries.get((service, username))

    def set_password(self, service, username, password):
        self.entries[(service, username)] = password

    def delete_password(self, service, username):
        if (service, username) not in self.entries:
            raise keyring.errors.PasswordDeleteError(username)
        del self.entries[(service, username)]


class LockedKeyring(MemoryKeyring):
    def set_password(self, service, username, password):
        raise keyring.errors.PasswordSetError("locked")


@pytest.fixture
def use_keyring():
    previous = keyring.get_keyring()

    def _install(backend):
        keyring.set_keyring(backend)
        return backend

    yield _install
    keyring.set_keyring(previous)


def test_account_id_encoding_is_file_safe() -> None:
    for account in ("default", "me@example.com", "../../etc/passwd", "Work Account", "ünïcode"):
        encoded = encode_account_id(account)
        assert encoded.isalnum()
        assert encoded == encoded.lower()
        assert decode_account_id(encoded) == account


def test_file_store_round_trip(tmp_path) -> None:
    store = FileTokenStore(tmp_path / "tokens")
    record = _record()
    store.put("me@example.com", record)
    assert store.get("me@example.com") == record


def test_file_store_round_trip_without_refresh_token(tmp_path) -> None:
    store = FileTokenStore(tmp_path)
    record = _record(refresh=None)
    store.put("svc", record)
    assert store.get("svc") == record


def test_file_store_replaces_record(tmp_path) -> None:
    store = FileTokenStore(tmp_path)
    store.put("a", _record("old"))
    store.put("a", _record("new"))
    assert store.get("a").access_token == "new"
    assert len(list(tmp_path.iterdir())) == 1


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
def test_file_store_restricts_permissions(tmp_path) -> None:
    store = FileTokenStore(tmp_path)
    store.put("a", _record())
    mode = stat.S_IMODE(os.stat(store.path_for("a")).st_mode)
    assert mode == 0o600


def test_file_path_stays_inside_directory(tmp_path) -> None:
    store = FileTokenStore(tmp_path)
    path = store.path_for("../../outside")
    assert path.parent == tmp_path
    assert path.name.startswith("token_")


def test_logout_one_account_keeps_the_other(tmp_path) -> None:
    store = FileTokenStore(tmp_path)
    a, b = _record("token-a"), _record("token-b")
    store.put("a", a)
    store.put("b", b)

    store.delete("a")

    assert store.list() == {"b"}
    assert store.get("a") is None
    assert store.get("b") == b


def test_delete_unknown_account_is_noop(tmp_path) -> None:
    store = FileTokenStore(tmp_path)
    store.delete("nobody")
    store.delete("nobody")
    assert store.list() == set()


def test_list_on_missing_directory(tmp_path) -> None:
    assert FileTokenStore(tmp_path / "absent").list() == set()


def test_list_ignores_foreign_files(tmp_path) -> None:
    store = FileTokenStore(tmp_path)
    store.put("a", _record())
    (tmp_path / "token_!!!.json").write_text("{}")
    (tmp_path / "notes.txt").write_text("hi")
    assert store.list() == {"a"}


def test_corrupt_file_is_reported(tmp_path) -> None:
    store = FileTokenStore(tmp_path)
    store.path_for("a").write_text("{not json")
    with pytest.raises(StoreCorruptError):
        store.get("a")

    store.path_for("a").write_text('{"access_token": "x"}')
    with pytest.raises(StoreCorruptError):
        store.get("a")


def test_keyring_store_round_trip(use_keyring) -> None:
    backend = use_keyring(MemoryKeyring())
    store = KeyringTokenStore(service="wscli-test")
    assert store.available()

    store.put("a", _record("token-a"))
    store.put("b", _record("token-b"))

    assert store.get("a") == _record("token-a")
    assert store.list() == {"a", "b"}
    assert ("wscli-test", "a") in backend.entries

    store.delete("a")
    store.delete("a")
    assert store.list() == {"b"}
    assert store.get("a") is None


def test_keyring_index_does_not_collide_with_account_ids(use_keyring) -> None:
    backend = use_keyring(MemoryKeyring())
    store = KeyringTokenStore(service="wscli-test")

    store.put("alice", _record("token-alice"))
    store.put("accounts", _record("token-accounts"))
    store.put("__accounts__", _record("token-dunder"))
    store.put("bob", _record("token-bob"))

    assert store.list() == {"alice", "accounts", "__accounts__", "bob"}
    assert store.get("alice") == _record("token-alice")
    assert store.get("accounts") == _record("token-accounts")
    assert store.get("__accounts__") == _record("token-dunder")
    assert ("wscli-test.index", "accounts") in backend.entries


def test_keyring_store_unavailable_with_null_backend(use_keyring) -> None:
    use_keyring(null.Keyring())
    store = KeyringTokenStore()
    assert not store.available()
    with pytest.raises(BackendUnavailableError):
        store.get("a")


def test_fallback_uses_file_without_keyring(use_keyring, tmp_path) -> None:
    use_keyring(null.Keyring())
    files = FileTokenStore(tmp_path)
    store = FallbackTokenStore([KeyringTokenStore(), files])

    store.put("a", _record())

    assert store.name == "file"
    assert files.get("a") == _record()
    assert store.get("a") == _record()
    assert store.list() == {"a"}


def test_fallback_prefers_keyring_when_usable(use_keyring, tmp_path) -> None:
    use_keyring(MemoryKeyring())
    files = FileTokenStore(tmp_path)
    store = FallbackTokenStore([KeyringTokenStore(), files])

    store.put("a", _record())

    assert store.name == "keyring"
    assert files.get("a") is None
    assert store.get("a") == _record()


def test_fallback_demotes_keyring_on_write_failure(use_keyring, tmp_path) -> None:
    use_keyring(LockedKeyring())
    files = FileTokenStore(tmp_path)
    store = FallbackTokenStore([KeyringTokenStore(), files])

    store.put("a", _record())

    assert files.get("a") == _record()
    assert store.name == "file"


def test_corrupt_file_does_not_hide_secure_record(use_keyring, tmp_path) -> None:
    use_keyring(MemoryKeyring())
    secure = KeyringTokenStore()
    files = FileTokenStore(tmp_path)
    secure.put("a", _record("secure"))
    files.path_for("a").write_text("garbage")

    store = FallbackTokenStore([secure, files])
    assert store.get("a").access_token == "secure"


def test_corrupt_record_reads_as_absent(use_keyring, tmp_path) -> None:
    use_keyring(null.Keyring())
    files = FileTokenStore(tmp_path)
    files.path_for("a").write_text("garbage")
    store = FallbackTokenStore([KeyringTokenStore(), files])
    assert store.get("a") is None


def test_fallback_delete_clears_every_backend(use_keyring, tmp_path) -> None:
    use_keyring(MemoryKeyring())
    secure = KeyringTokenStore()
    files = FileTokenStore(tmp_path)
    secure.put("a", _record())
    files.put("a", _record())

    FallbackTokenStore([secure, files]).delete("a")

    assert secure.get("a") is None
    assert files.get("a") is None


def test_fallback_requires_a_backend() -> None:
    with pytest.raises(ValueError):
        FallbackTokenStore([])
