import os

import pytest

from app.utils.config import (
    AuthConfig,
    AuthUserSettings,
    _merge_users_with_env,
    extract_auth_users_env,
)


def test_extract_auth_users_env(monkeypatch):
    monkeypatch.setenv("CONFIG_AUTH__USERS__0__TOKEN", "t0")
    monkeypatch.setenv("CONFIG_AUTH__USERS__1__ID", "u1")
    monkeypatch.setenv("CONFIG_AUTH__USERS__x__ID", "ignored")

    overrides = extract_auth_users_env()

    assert overrides == {0: {"token": "t0"}, 1: {"id": "u1"}}
    assert "CONFIG_AUTH__USERS__0__TOKEN" not in os.environ
    assert os.environ["CONFIG_AUTH__USERS__x__ID"] == "ignored"


def test_merge_users_with_env():
    base = [AuthUserSettings(id="u0", token="old")]

    merged = _merge_users_with_env(base, {0: {"token": "new"}, 1: {"id": "u1", "token": "t1"}})

    assert [(u.id, u.token) for u in merged] == [("u0", "new"), ("u1", "t1")]
    assert base[0].token == "old"
    assert _merge_users_with_env(None, {}) == []


def test_merge_rejects_gaps():
    with pytest.raises(IndexError):
        _merge_users_with_env([], {1: {"id": "u1", "token": "t1"}})


def test_users_from_json_string():
    config = AuthConfig(users='[{"id": "u0", "token": " t0 "}]')

    assert config.users == [AuthUserSettings(id="u0", token="t0")]
