"""Unit tests for operator API key authentication."""

from unittest.mock import patch

import pytest
from fastapi import HTTPException

from quotaguard.core.auth import parse_api_keys, validate_api_key, verify_api_key
from quotaguard.core.errors import AuthenticationAppError


class TestParseAPIKeys:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("ops-key", {"ops-key"}),
            ("key1,key2,key3", {"key1", "key2", "key3"}),
            ("key1 , key2  ,  key3", {"key1", "key2", "key3"}),
            ("key1,key2,key1", {"key1", "key2"}),
            (None, set()),
            ("", set()),
            ("   ,  ,  ", set()),
        ],
    )
    def test_parse(self, raw, expected) -> None:
        assert parse_api_keys(raw) == expected


class TestValidateAPIKey:
    @patch("quotaguard.core.auth.settings")
    def test_validate_bypassed_when_auth_disabled(self, mock_settings) -> None:
        """Any key passes when APP_API_KEY_REQUIRED=false."""
        mock_settings.app.api_key_required = False

        validate_api_key("any-random-key")
        validate_api_key("")

    @pytest.mark.parametrize("configured", [None, "", " , "])
    @patch("quotaguard.core.auth.settings")
    def test_validate_raises_when_no_keys_configured(self, mock_settings, configured) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = configured

        with pytest.raises(AuthenticationAppError) as exc_info:
            validate_api_key("some-key")

        assert exc_info.value.code == "api_keys_not_configured"
        assert "no valid keys are configured" in exc_info.value.message

    @patch("quotaguard.core.auth.settings")
    def test_validate_accepts_trimmed_configured_keys(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = " ops-1 , ops-2 "

        validate_api_key("ops-1")
        validate_api_key("ops-2")

        with pytest.raises(AuthenticationAppError):
            validate_api_key(" ops-1 ")

    @pytest.mark.parametrize("provided", ["", "ops-3", "OPS-1"])
    @patch("quotaguard.core.auth.settings")
    def test_validate_rejects_unknown_key(self, mock_settings, provided) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = "ops-1,ops-2"

        with pytest.raises(AuthenticationAppError) as exc_info:
            validate_api_key(provided)

        assert exc_info.value.code == "invalid_api_key"


class TestVerifyAPIKeyDependency:
    @pytest.mark.asyncio
    @patch("quotaguard.core.auth.settings")
    async def test_verify_bypassed_when_auth_disabled(self, mock_settings) -> None:
        mock_settings.app.api_key_required = False

        await verify_api_key(x_api_key=None)

    @pytest.mark.asyncio
    @patch("quotaguard.core.auth.settings")
    async def test_verify_raises_403_when_header_missing(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = "ops-1"

        with pytest.raises(HTTPException) as exc_info:
            await verify_api_key(x_api_key=None)

        assert exc_info.value.status_code == 403
        assert "Missing API key" in exc_info.value.detail

    @pytest.mark.asyncio
    @patch("quotaguard.core.auth.settings")
    async def test_verify_raises_403_when_key_invalid(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = "ops-1"

        with pytest.raises(HTTPException) as exc_info:
            await verify_api_key(x_api_key="wrong-key")

        assert exc_info.value.status_code == 403
        assert "Invalid or missing API key" in exc_info.value.detail

    @pytest.mark.asyncio
    @patch("quotaguard.core.auth.settings")
    async def test_verify_accepts_valid_key(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = "ops-1,ops-2"

        await verify_api_key(x_api_key="ops-2")
