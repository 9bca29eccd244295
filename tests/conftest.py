import os

import pytest


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path, monkeypatch):
    """Keep every test away from the real ~/.wscli and WSCLI_* settings."""
    for key in list(os.environ):
        if key.startswith("WSCLI_"):
            monkeypatch.delenv(key)
    home = tmp_path / "home"
    monkeypatch.setenv("WSCLI_HOME", str(home))
    return home
