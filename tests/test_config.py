# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_variance

from decimal import Decimal

import pytest
from coreason_variance.config import Settings
from coreason_variance.server import default_thresholds


def test_settings_defaults() -> None:
    settings = Settings(_env_file=None)
    assert settings.CACHE_TTL_SECONDS == 3600
    assert settings.DEFAULT_WARNING_PERCENT == Decimal("10")
    assert settings.DEFAULT_CRITICAL_PERCENT == Decimal("15")
    assert settings.NET_IMPACT_THRESHOLD == Decimal("1000")
    assert settings.INCLUDE_ZERO_VARIANCES is True


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CACHE_TTL_SECONDS", "120")
    monkeypatch.setenv("DEFAULT_CRITICAL_PERCENT", "25")
    settings = Settings(_env_file=None)
    assert settings.CACHE_TTL_SECONDS == 120
    assert settings.DEFAULT_CRITICAL_PERCENT == Decimal("25")


def test_default_thresholds_follow_settings() -> None:
    config = default_thresholds()
    assert config.warning_percent < config.critical_percent
