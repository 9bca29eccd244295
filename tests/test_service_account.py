import json
import urllib.parse

import httpx
import pytest
from google.auth import jwt

from wscli.auth.service_account import JWT_BEARER_GRANT, ServiceAccountAuthenticator, load_service_account_info
from wscli.client.errors import AuthenticationFailedError

rsa = pytest.importorskip("cryptography.hazmat.primitives.asymmetric.rsa")
serialization = pytest.importorskip("cryptography.hazmat.primitives.serialization")


@pytest.fixture(scope="module")
def key_info() -> dict:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    return {
        "type": "service_account",
        "client_email": "robot@project.iam.gserviceaccount.com",
        "private_key_id": "key-1",
        "private_key": pem,
        "token_uri": "https://oauth2.googleapis.com/token",
    }


def _authenticator(info, handler=None, **kwargs) -> ServiceAccountAuthenticator:
    handler = handler or (lambda request: httpx.Response(500))
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ServiceAccountAuthenticator(info, http, **kwargs)


def test_assertion_claims(key_info) -> None:
    auth = _authenticator(key_info, scopes=("scope-a", "scope-b"), subject="user@example.com")
    claims = jwt.decode(auth.build_assertion(now=1_700_000_000), verify=False)

    assert claims["iss"] == "robot@project.iam.gserviceaccount.com"
    assert claims["sub"] == "user@example.com"
    assert claims["aud"] == "https://oauth2.googleapis.com/token"
    assert claims["scope"] == "scope-a scope-b"
    assert claims["exp"] - claims["iat"] == 3600


@pytest.mark.asyncio
async def test_login_exchanges_assertion(key_info) -> None:
    forms: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        forms.append(dict(urllib.parse.parse_qsl(request.content.decode())))
        return httpx.Response(200, json={"access_token": "sa-token", "expires_in": 3600})

    auth = _authenticator(key_info, handler)
    record = await auth.login()
    again = await auth.refresh(record)

    assert record.access_token == "sa-token"
    assert record.refresh_token is None
    assert again.access_token == "sa-token"
    assert len(forms) == 2
    assert forms[0]["grant_type"] == JWT_BEARER_GRANT
    assert forms[0]["assertion"].count(".") == 2


def test_load_rejects_non_service_account(tmp_path) -> None:
    path = tmp_path / "key.json"
    path.write_text(json.dumps({"installed": {"client_id": "x"}}))
    with pytest.raises(AuthenticationFailedError):
        load_service_account_info(path)


def test_load_requires_private_key(tmp_path) -> None:
    path = tmp_path / "key.json"
    path.write_text(json.dumps({"type": "service_account", "client_email": "a@b"}))
    with pytest.raises(AuthenticationFailedError):
        load_service_account_info(path)
