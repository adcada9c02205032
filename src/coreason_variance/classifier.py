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
from typing import Optional

from coreason_variance.models import Direction, Severity, ThresholdConfig
from coreason_variance.profiles import SeverityProfile, resolve_profile


class SeverityClassifier:
    """
    The Classifier: Maps the magnitude of a variance percent to a severity tier.
    """

    def __init__(self, config: Optional[ThresholdConfig] = None) -> None:
        """
        Initialize with an organization's thresholds.
        If no config is provided, uses the default thresholds.
        Raises InvalidThresholdError if warning >= critical.
        """
        self.config = config if config is not None else ThresholdConfig()
        # Configs built with model_construct skip validation
        self.config.ensure_valid()
        self.profile: SeverityProfile = resolve_profile(self.config)

    @property
    def critical_bound(self) -> Decimal:
        """Percent above which the profile's most severe tier applies."""
        return self.profile.top_bound

    def classify(self, variance_percent: Decimal) -> Severity:
        """
        Returns the tier of the first band the absolute percent strictly exceeds.
        A percent exactly on a bound falls into the lower tier.
        """
        magnitude = abs(variance_percent)
        for band in self.profile.bands:
            if magnitude > band.above_percent:
                return band.severity
        return self.profile.floor

    def is_exceptionally_favorable(self, variance_percent: Decimal, direction: Direction) -> bool:
        """
        True for a favorable variance whose magnitude reaches the favorable threshold.
        """
        if direction != Direction.FAVORABLE:
            return False
        return -abs(variance_percent) <= self.config.favorable_percent
