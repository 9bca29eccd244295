"""Authentication: token records, storage backends and per-account lifecycle."""

from wscli.auth.flow import Authenticator, OAuthAuthenticator, read_oauth_credentials
from wscli.auth.manager import SingleFlight, TokenManager
from wscli.auth.models import AuthState, OAuthCredentials, TokenRecord
from wscli.auth.service_account import ServiceAccountAuthenticator
from wscli.auth.storage import (
    FallbackTokenStore,
    FileTokenStore,
    KeyringTokenStore,
    TokenStore,
    default_token_store,
)

__all__ = [
    "AuthState",
    "Authenticator",
    "FallbackTokenStore",
    "FileTokenStore",
    "KeyringTokenStore",
    "OAuthAuthenticator",
    "OAuthCredentials",
    "ServiceAccountAuthenticator",
    "SingleFlight",
    "TokenManager",
    "TokenRecord",
    "TokenStore",
    "default_token_store",
    "read_oauth_credentials",
]
