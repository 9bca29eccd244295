"""Active-account pointer and per-account credential locations.

The pointer and the account -> credentials-file mapping live in the
configuration file. The set of known accounts is whatever the token store
holds; it is never duplicated here.
"""

from __future__ import annotations

import logging
from pathlib import Path

from wscli.auth.constants import CREDENTIALS_FILENAMES, DEFAULT_ACCOUNT
from wscli.auth.flow import find_credentials_file
from wscli.client.errors import InvalidRequestError
from wscli.config.loader import get_data_dir, update_config
from wscli.config.schema import Config

logger = logging.getLogger(__name__)


def resolve_account(config: Config, explicit: str | None = None) -> str:
    """Explicit account, else the persisted pointer, else ``default``."""
    if explicit:
        return explicit
    return config.auth.current_account or DEFAULT_ACCOUNT


def credentials_candidates(config: Config, account_id: str, explicit: Path | None = None) -> list[Path]:
    """Credential file locations for ``account_id`` in lookup order."""
    candidates: list[Path] = []
    if explicit:
        candidates.append(Path(explicit).expanduser())
    mapped = config.auth.accounts.get(account_id)
    if mapped:
        candidates.append(Path(mapped).expanduser())
    if config.auth.credentials_path:
        candidates.append(Path(config.auth.credentials_path).expanduser())
    candidates.append(Path.cwd() / CREDENTIALS_FILENAMES[0])
    candidates.append(get_data_dir() / CREDENTIALS_FILENAMES[0])
    candidates.extend(Path.home() / name for name in CREDENTIALS_FILENAMES)
    return candidates


def resolve_credentials_path(config: Config, account_id: str, explicit: Path | None = None) -> Path | None:
    return find_credentials_file(credentials_candidates(config, account_id, explicit))


def _save_account_state(config: Config, config_path: Path | None) -> None:
    # Only the account keys; the rest of the file stays as written.
    update_config(
        {"auth": {"current_account": config.auth.current_account, "accounts": dict(config.auth.accounts)}},
        config_path,
    )


def record_login(
    config: Config,
    account_id: str,
    credentials_path: Path | None,
    make_current: bool = True,
    config_path: Path | None = None,
) -> Config:
    """Remember the credentials used for ``account_id`` and optionally select it."""
    if credentials_path is not None:
        config.auth.accounts[account_id] = str(Path(credentials_path).expanduser().resolve())
    if make_current:
        config.auth.current_account = account_id
    _save_account_state(config, config_path)
    return config


def switch_account(
    config: Config,
    account_id: str,
    known_accounts: set[str] | None = None,
    config_path: Path | None = None,
) -> Config:
    """Make ``account_id`` the account used when none is given explicitly."""
    if known_accounts is not None and account_id not in known_accounts:
        raise InvalidRequestError(
            f"Account '{account_id}' is not logged in. Known accounts: {', '.join(sorted(known_accounts)) or 'none'}"
        )
    config.auth.current_account = account_id
    _save_account_state(config, config_path)
    logger.info("Switched active account to %s", account_id)
    return config


def forget_account(config: Config, account_id: str, config_path: Path | None = None) -> Config:
    """Drop the credentials mapping for a logged-out account and clear the pointer if it was current."""
    config.auth.accounts.pop(account_id, None)
    if config.auth.current_account == account_id:
        config.auth.current_account = None
    _save_account_state(config, config_path)
    return config
