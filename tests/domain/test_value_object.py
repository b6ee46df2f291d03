"""
Tests for domain value objects.

This module tests Settings defaults and decoding, LaunchOptions and the
enumerations used in results.
"""

import msgspec
import pytest

from loopwright.domain.value_object import (
    GLOBAL_RECOVERY,
    LaunchOptions,
    RecoverWith,
    Settings,
    Status,
    Viewport,
)


class TestSettings:
    """Test cases for Settings."""

    def test_defaults(self):
        """Test default settings describe a single bounded iteration."""
        settings = Settings()

        assert settings.loop_count == 1
        assert settings.duration == -1.0
        assert settings.tries == 1
        assert settings.step_delay == 0.0
        assert settings.viewport is None
        assert settings.launch_args == []
        assert settings.sandbox is None

    def test_decode_from_dict(self):
        """Test decoding settings with a nested viewport."""
        settings = msgspec.convert(
            {"name": "Checkout", "loop_count": 3, "viewport": {"width": 800, "height": 600}},
            type=Settings,
        )

        assert settings.name == "Checkout"
        assert settings.loop_count == 3
        assert settings.viewport == Viewport(width=800, height=600)

    def test_unknown_field_rejected(self):
        """Test unknown settings are rejected."""
        with pytest.raises(msgspec.ValidationError):
            msgspec.convert({"loops": 3}, type=Settings)

    def test_settings_are_frozen(self):
        """Test settings cannot be mutated."""
        settings = Settings()

        with pytest.raises(AttributeError):
            settings.loop_count = 5


class TestLaunchOptions:
    """Test cases for LaunchOptions."""

    def test_defaults(self):
        options = LaunchOptions()

        assert options.headless is True
        assert options.devtools is False
        assert options.sandbox is None
        assert options.args == []

    def test_from_env_disables_sandbox(self, monkeypatch):
        """Test NO_CHROME_SANDBOX=1 turns the browser sandbox off."""
        monkeypatch.setenv("NO_CHROME_SANDBOX", "1")

        assert LaunchOptions.from_env().sandbox is False

    def test_from_env_without_variable(self, monkeypatch):
        monkeypatch.delenv("NO_CHROME_SANDBOX", raising=False)

        assert LaunchOptions.from_env().sandbox is None

    def test_from_env_explicit_override_wins(self, monkeypatch):
        """Test an explicit sandbox value takes precedence over the environment."""
        monkeypatch.setenv("NO_CHROME_SANDBOX", "1")

        options = LaunchOptions.from_env(sandbox=True, headless=False)

        assert options.sandbox is True
        assert options.headless is False


class TestEnums:
    """Test cases for result and recovery enumerations."""

    def test_status_values(self):
        assert [status.value for status in Status] == ["passed", "failed", "skipped", "unexecuted"]

    def test_recover_with_values(self):
        assert RecoverWith("continue") is RecoverWith.CONTINUE
        assert RecoverWith("restart") is RecoverWith.RESTART
        assert RecoverWith("retry") is RecoverWith.RETRY

    def test_global_recovery_key(self):
        assert GLOBAL_RECOVERY == "global"
