"""
Tests for settings and provider options.
"""

import pytest
from pydantic import ValidationError

from cas_login.config import Settings, get_settings
from cas_login.main import provider_options_from_settings
from cas_login.models import ProviderOptions


class TestSettings:
    """Test suite for environment settings"""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("CAS_SERVER_URL", raising=False)
        settings = Settings(_env_file=None)

        assert settings.CAS_PROVIDER_NAME == "cas"
        assert settings.CAS_VERSION == "CAS3.0"
        assert settings.FAILURE_REDIRECT == "/login.html"
        assert settings.CAS_SESSION is False
        assert settings.allowed_origins_list == []

    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv("CAS_SERVER_URL", "https://cas.example.edu/cas/")
        monkeypatch.setenv("CAS_JSON", "true")
        monkeypatch.setenv("ALLOWED_ORIGINS", "http://a.example.edu, http://b.example.edu")
        get_settings.cache_clear()
        try:
            settings = get_settings()
        finally:
            get_settings.cache_clear()

        assert settings.cas_server_url_str == "https://cas.example.edu/cas"
        assert settings.CAS_JSON is True
        assert settings.allowed_origins_list == ["http://a.example.edu", "http://b.example.edu"]

    def test_invalid_cas_version(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, CAS_VERSION="CAS4.0")

    def test_invalid_cas_server_url(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, CAS_SERVER_URL="cas.example.edu")

    def test_log_level_normalized(self):
        assert Settings(_env_file=None, LOG_LEVEL="debug").LOG_LEVEL == "DEBUG"

    def test_provider_options_from_settings(self):
        settings = Settings(
            _env_file=None,
            CAS_SERVER_URL="https://cas.example.edu/cas/",
            CAS_SESSION=True,
            CAS_JSON=True,
            COOKIE_DOMAIN="example.edu",
            CAS_ATTR_FOR_USERNAME="mail",
        )

        options = provider_options_from_settings(settings)

        assert options.sso_base_url == "https://cas.example.edu/cas"
        assert options.session is True
        assert options.json_response is True
        assert options.domain == "example.edu"
        assert options.cas_attr_for_username == "mail"


class TestProviderOptions:
    """Test suite for the provider options bag"""

    def test_defaults(self):
        options = ProviderOptions()

        assert options.callback_http_method == "get"
        assert options.cas_attr_for_username == "user"
        assert options.session is False
        assert options.json_response is False
        assert options.auth_options == {}

    def test_camel_case_names(self):
        options = ProviderOptions.model_validate({
            "authPath": "/sso",
            "callbackPath": "/sso/cb",
            "callbackHTTPMethod": "POST",
            "successRedirect": "/home",
            "failureQueryString": True,
            "json": True,
            "casAttrForUsername": "mail",
            "ssoBaseURL": "https://cas.example.edu/cas",
        })

        assert options.auth_path == "/sso"
        assert options.callback_path == "/sso/cb"
        assert options.callback_http_method == "post"
        assert options.success_redirect == "/home"
        assert options.failure_query_string is True
        assert options.json_response is True
        assert options.cas_attr_for_username == "mail"
        assert options.sso_base_url == "https://cas.example.edu/cas"

    def test_only_post_is_special(self):
        assert ProviderOptions(callback_http_method="put").callback_http_method == "get"

    def test_unknown_options_are_kept(self):
        options = ProviderOptions.model_validate({"renew": True})

        assert options.model_extra == {"renew": True}

    def test_invalid_version(self):
        with pytest.raises(ValidationError):
            ProviderOptions(version="CAS9")
