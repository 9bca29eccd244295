"""Token storage backends.

Tokens live in the OS secret store when one is usable and fall back to one
permission-restricted JSON file per account otherwise. Callers depend only on
the :class:`TokenStore` interface.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

import keyring
import keyring.errors
from keyring.backends import fail, null

from wscli.auth.constants import (
    KEYRING_INDEX_KEY,
    KEYRING_INDEX_SUFFIX,
    KEYRING_SERVICE,
    TOKEN_DIRNAME,
    TOKEN_FILE_PREFIX,
    TOKEN_FILE_SUFFIX,
)
from wscli.auth.models import TokenRecord
from wscli.utils.helpers import get_data_path

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base class for token storage failures."""


class StoreIOError(StoreError):
    """The backend failed while reading or writing."""


class StoreCorruptError(StoreError):
    """Persisted data exists but cannot be decoded."""


class BackendUnavailableError(StoreError):
    """The backend cannot be used on this machine right now."""


def encode_account_id(account_id: str) -> str:
    """Encode an account id into a file-name-safe, case-insensitive token."""
    raw = base64.b32encode(account_id.encode("utf-8")).decode("ascii")
    return raw.rstrip("=").lower()


def decode_account_id(encoded: str) -> str:
    padding = "=" * (-len(encoded) % 8)
    return base64.b32decode(encoded.upper() + padding).decode("utf-8")


def _decode_record(raw: str, where: str) -> TokenRecord:
    try:
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise TypeError("token record must be a JSON object")
        return TokenRecord.from_dict(data)
    except (ValueError, KeyError, TypeError) as exc:
        raise StoreCorruptError(f"Malformed token record in {where}: {exc}") from exc


def _encode_record(record: TokenRecord) -> str:
    return json.dumps(record.to_dict(), ensure_ascii=True, indent=2)


class TokenStore(ABC):
    """Persist and retrieve token records by account id."""

    name: str = "store"

    @abstractmethod
    def put(self, account_id: str, record: TokenRecord) -> None: ...

    @abstractmethod
    def get(self, account_id: str) -> TokenRecord | None: ...

    @abstractmethod
    def delete(self, account_id: str) -> None: ...

    @abstractmethod
    def list(self) -> set[str]: ...

    def available(self) -> bool:
        return True


class FileTokenStore(TokenStore):
    """One JSON file per account, readable only by the owning user."""

    name = "file"

    def __init__(self, directory: Path | None = None):
        self.directory = directory or get_data_path() / TOKEN_DIRNAME

    def path_for(self, account_id: str) -> Path:
        return self.directory / f"{TOKEN_FILE_PREFIX}{encode_account_id(account_id)}{TOKEN_FILE_SUFFIX}"

    def put(self, account_id: str, record: TokenRecord) -> None:
        path = self.path_for(account_id)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            # mkstemp creates the file with 0600 on POSIX.
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=TOKEN_FILE_SUFFIX)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fp:
                    fp.write(_encode_record(record))
                    fp.flush()
                    os.fsync(fp.fileno())
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except PermissionError as exc:
            raise BackendUnavailableError(f"Token directory not writable: {exc}") from exc
        except OSError as exc:
            raise StoreIOError(f"Failed to write token file {path}: {exc}") from exc
        try:
            os.chmod(path, 0o600)
        except OSError:
            # Not supported on every platform.
            pass

    def get(self, account_id: str) -> TokenRecord | None:
        path = self.path_for(account_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except PermissionError as exc:
            raise BackendUnavailableError(f"Token file not readable: {exc}") from exc
        except OSError as exc:
            raise StoreIOError(f"Failed to read token file {path}: {exc}") from exc
        return _decode_record(raw, str(path))

    def delete(self, account_id: str) -> None:
        try:
            self.path_for(account_id).unlink(missing_ok=True)
        except OSError as exc:
            raise StoreIOError(f"Failed to remove token file: {exc}") from exc

    def list(self) -> set[str]:
        if not self.directory.is_dir():
            return set()
        accounts: set[str] = set()
        pattern = f"{TOKEN_FILE_PREFIX}*{TOKEN_FILE_SUFFIX}"
        for entry in self.directory.glob(pattern):
            encoded = entry.name[len(TOKEN_FILE_PREFIX):-len(TOKEN_FILE_SUFFIX)]
            try:
                accounts.add(decode_account_id(encoded))
            except (binascii.Error, UnicodeDecodeError):
                logger.debug("Ignoring unrecognised token file %s", entry.name)
        return accounts


class KeyringTokenStore(TokenStore):
    """OS secret store (macOS Keychain, Windows Credential Locker, Secret Service).

    Secret stores cannot be enumerated, so the set of account ids is kept in an
    index entry under its own service name, apart from the token entries.
    """

    name = "keyring"

    def __init__(self, service: str = KEYRING_SERVICE):
        self.service = service
        self.index_service = service + KEYRING_INDEX_SUFFIX

    def available(self) -> bool:
        backend = keyring.get_keyring()
        return not isinstance(backend, (fail.Keyring, null.Keyring))

    def _get_password(self, key: str, service: str | None = None) -> str | None:
        try:
            return keyring.get_password(service or self.service, key)
        except keyring.errors.KeyringError as exc:
            raise BackendUnavailableError(f"Keyring read failed: {exc}") from exc

    def _set_password(self, key: str, value: str, service: str | None = None) -> None:
        try:
            keyring.set_password(service or self.service, key, value)
        except keyring.errors.KeyringError as exc:
            raise BackendUnavailableError(f"Keyring write failed: {exc}") from exc

    def _read_index(self) -> set[str]:
        raw = self._get_password(KEYRING_INDEX_KEY, self.index_service)
        if not raw:
            return set()
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Keyring account index is corrupt; treating it as empty")
            return set()
        if not isinstance(data, list):
            logger.warning("Keyring account index has unexpected shape; treating it as empty")
            return set()
        return {str(item) for item in data}

    def _write_index(self, accounts: set[str]) -> None:
        self._set_password(KEYRING_INDEX_KEY, json.dumps(sorted(accounts)), self.index_service)

    def put(self, account_id: str, record: TokenRecord) -> None:
        if not self.available():
            raise BackendUnavailableError("No usable keyring backend")
        # One entry per account, replaced as a whole.
        self._set_password(account_id, _encode_record(record))
        accounts = self._read_index()
        if account_id not in accounts:
            accounts.add(account_id)
            self._write_index(accounts)

    def get(self, account_id: str) -> TokenRecord | None:
        if not self.available():
            raise BackendUnavailableError("No usable keyring backend")
        raw = self._get_password(account_id)
        if raw is None:
            return None
        return _decode_record(raw, f"keyring entry {self.service}/{account_id}")

    def delete(self, account_id: str) -> None:
        if not self.available():
            raise BackendUnavailableError("No usable keyring backend")
        try:
            keyring.delete_password(self.service, account_id)
        except keyring.errors.PasswordDeleteError:
            pass
        except keyring.errors.KeyringError as exc:
            raise BackendUnavailableError(f"Keyring delete failed: {exc}") from exc
        accounts = self._read_index()
        if account_id in accounts:
            accounts.discard(account_id)
            self._write_index(accounts)

    def list(self) -> set[str]:
        if not self.available():
            raise BackendUnavailableError("No usable keyring backend")
        return self._read_index()


class FallbackTokenStore(TokenStore):
    """Ordered chain of backends; the first usable one is the active backend."""

    def __init__(self, backends: list[TokenStore]):
        if not backends:
            raise ValueError("FallbackTokenStore needs at least one backend")
        self.backends = backends
        self._active: TokenStore | None = None

    @property
    def name(self) -> str:  # type: ignore[override]
        return self.active.name

    @property
    def active(self) -> TokenStore:
        if self._active is None:
            self._active = next((b for b in self.backends if b.available()), self.backends[-1])
            logger.debug("Active token backend: %s", self._active.name)
        return self._active

    def _demote(self, backend: TokenStore, exc: StoreError) -> None:
        logger.warning("Token backend %s unavailable (%s); falling back", backend.name, exc)
        if self._active is backend:
            idx = self.backends.index(backend)
            self._active = self.backends[idx + 1] if idx + 1 < len(self.backends) else backend

    def put(self, account_id: str, record: TokenRecord) -> None:
        last_error: StoreError | None = None
        start = self.backends.index(self.active)
        for backend in self.backends[start:]:
            try:
                backend.put(account_id, record)
                self._active = backend
                return
            except BackendUnavailableError as exc:
                last_error = exc
                self._demote(backend, exc)
        assert last_error is not None
        raise last_error

    def get(self, account_id: str) -> TokenRecord | None:
        for backend in self.backends:
            try:
                record = backend.get(account_id)
            except BackendUnavailableError as exc:
                logger.debug("Skipping %s backend: %s", backend.name, exc)
                continue
            except StoreCorruptError as exc:
                logger.warning("%s; treating as no token", exc)
                continue
            if record is not None:
                return record
        return None

    def delete(self, account_id: str) -> None:
        for backend in self.backends:
            try:
                backend.delete(account_id)
            except BackendUnavailableError as exc:
                logger.debug("Skipping %s backend on delete: %s", backend.name, exc)

    def list(self) -> set[str]:
        try:
            return self.active.list()
        except BackendUnavailableError as exc:
            self._demote(self.active, exc)
            return self.active.list()


def default_token_store(use_keyring: bool = True, directory: Path | None = None) -> FallbackTokenStore:
    backends: list[TokenStore] = []
    if use_keyring:
        backends.append(KeyringTokenStore())
    backends.append(FileTokenStore(directory))
    return FallbackTokenStore(backends)
