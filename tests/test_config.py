"""Unit tests for core/config.py -- Settings validation.

Covers:
- defaults
- DB_DRIVER normalisation and rejection of unknown backends
- BCRYPT_ROUNDS and SESSION_TOKEN_LENGTH bounds
- SECURE_COOKIES=false only in debug mode
- ROUTE_PERMISSIONS parsed from a JSON env var
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings, get_settings


class TestSettings:
    def test_defaults(self) -> None:
        s = Settings()
        assert s.db_driver == "sqlite"
        assert s.bcrypt_rounds == 10
        assert s.session_token_length == 32
        assert s.cookie_name == "SESSIONID"
        assert s.cookie_expire_days == 3650
        assert s.secure_cookies is True
        assert s.route_permissions == {}

    def test_driver_lowercased(self) -> None:
        assert Settings(db_driver="SQLServer").db_driver == "sqlserver"

    def test_unknown_driver_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(db_driver="oracle")

    @pytest.mark.parametrize("rounds", [3, 32])
    def test_bcrypt_rounds_out_of_range(self, rounds: int) -> None:
        with pytest.raises(ValidationError):
            Settings(bcrypt_rounds=rounds)

    def test_short_tokens_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(session_token_length=16)

    def test_insecure_cookies_need_debug(self) -> None:
        with pytest.raises(ValidationError):
            Settings(secure_cookies=False)
        assert Settings(secure_cookies=False, debug=True).secure_cookies is False

    def test_route_permissions_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ROUTE_PERMISSIONS", '{"GET_/reports": "reports.read"}')
        assert Settings().route_permissions == {"GET_/reports": "reports.read"}

    def test_get_settings_is_cached(self) -> None:
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()
