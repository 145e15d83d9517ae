"""
Tests for the shared Supabase client and the stale-connection retry helper
"""

from unittest.mock import MagicMock, patch

import httpx
import pytest

from realty_billing.config import supabase_config
from realty_billing.config.config import Config


@pytest.fixture(autouse=True)
def fresh_client_state(monkeypatch):
    monkeypatch.setattr(supabase_config, "_supabase_client", None)
    monkeypatch.setattr(supabase_config, "_last_error", None)
    monkeypatch.setattr(supabase_config, "_last_error_time", 0)


class TestGetSupabaseClient:
    def test_creates_client_once(self, monkeypatch):
        monkeypatch.setattr(Config, "SUPABASE_URL", "https://project.supabase.co")
        monkeypatch.setattr(Config, "SUPABASE_KEY", "service-key")

        with patch.object(supabase_config, "create_client", return_value=MagicMock()) as create:
            first = supabase_config.get_supabase_client()
            second = supabase_config.get_supabase_client()

        assert first is second
        create.assert_called_once()
        options = create.call_args.kwargs["options"]
        assert options.postgrest_client_timeout == Config.RECORD_STORE_TIMEOUT_SECONDS

    def test_rejects_url_without_scheme(self, monkeypatch):
        monkeypatch.setattr(Config, "SUPABASE_URL", "project.supabase.co")
        monkeypatch.setattr(Config, "SUPABASE_KEY", "service-key")

        with pytest.raises(RuntimeError, match="must start with"):
            supabase_config.get_supabase_client()

    def test_initialization_error_is_cached(self, monkeypatch):
        monkeypatch.setattr(Config, "SUPABASE_URL", None)
        monkeypatch.setattr(Config, "SUPABASE_KEY", None)

        with pytest.raises(RuntimeError):
            supabase_config.get_supabase_client()

        monkeypatch.setattr(Config, "SUPABASE_URL", "https://project.supabase.co")
        monkeypatch.setattr(Config, "SUPABASE_KEY", "service-key")
        with patch.object(supabase_config, "create_client") as create:
            with pytest.raises(RuntimeError, match="retry in"):
                supabase_config.get_supabase_client()
        create.assert_not_called()


class TestStaleConnectionRetry:
    @pytest.mark.parametrize(
        "error,expected",
        [
            (httpx.RemoteProtocolError("Server disconnected without sending a response."), True),
            (ConnectionResetError("Connection reset by peer"), True),
            (Exception("<ConnectionTerminated error_code:0, GOAWAY>"), True),
            (httpx.ReadTimeout("timed out"), False),
            (ValueError("invalid input syntax"), False),
        ],
    )
    def test_is_stale_connection_error(self, error, expected):
        assert supabase_config.is_stale_connection_error(error) is expected

    def test_retries_once_after_reset(self):
        operation = MagicMock(
            side_effect=[httpx.RemoteProtocolError("Server disconnected"), "ok"]
        )

        with (
            patch.object(supabase_config, "get_supabase_client", return_value=MagicMock()),
            patch.object(supabase_config, "reset_supabase_client") as reset,
            patch.object(supabase_config.time, "sleep"),
        ):
            assert supabase_config.execute_with_retry(operation, operation_name="test") == "ok"

        reset.assert_called_once()
        assert operation.call_count == 2

    def test_other_errors_are_not_retried(self):
        operation = MagicMock(side_effect=httpx.ReadTimeout("timed out"))

        with patch.object(supabase_config, "get_supabase_client", return_value=MagicMock()):
            with pytest.raises(httpx.ReadTimeout):
                supabase_config.execute_with_retry(operation)

        assert operation.call_count == 1

    def test_reset_without_client(self):
        assert supabase_config.reset_supabase_client() is False
