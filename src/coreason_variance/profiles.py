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
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field

from coreason_variance.models import Severity, SeverityProfileName, ThresholdConfig


class SeverityBand(BaseModel):
    """
    A severity tier that applies once the absolute variance percent is
    strictly greater than `above_percent`.
    """

    above_percent: Decimal = Field(..., description="Exclusive lower bound of the band, in percent", ge=0)
    severity: Severity = Field(..., description="Tier assigned inside the band")

    model_config = ConfigDict(frozen=True)


class SeverityProfile(BaseModel):
    """
    Ordered severity bands, highest bound first, plus the tier used below every band.
    """

    name: SeverityProfileName = Field(..., description="Profile name")
    bands: List[SeverityBand] = Field(..., description="Bands ordered by descending bound")
    floor: Severity = Field(..., description="Tier when no band applies")

    model_config = ConfigDict(frozen=True)

    @property
    def tiers(self) -> List[Severity]:
        """All tiers of the profile, most severe first."""
        return [band.severity for band in self.bands] + [self.floor]

    @property
    def top_bound(self) -> Decimal:
        """Bound of the most severe band."""
        return self.bands[0].above_percent


# Four-tier profile used for ad-hoc analysis (fixed bounds, independent of organization thresholds)
DETAILED_PROFILE = SeverityProfile(
    name=SeverityProfileName.DETAILED,
    bands=[
        SeverityBand(above_percent=Decimal("30"), severity=Severity.CRITICAL),
        SeverityBand(above_percent=Decimal("15"), severity=Severity.HIGH),
        SeverityBand(above_percent=Decimal("5"), severity=Severity.MEDIUM),
    ],
    floor=Severity.LOW,
)


def standard_profile(config: ThresholdConfig) -> SeverityProfile:
    """
    Builds the three-tier profile from an organization's thresholds.
    """
    return SeverityProfile(
        name=SeverityProfileName.STANDARD,
        bands=[
            SeverityBand(above_percent=config.critical_percent, severity=Severity.CRITICAL),
            SeverityBand(above_percent=config.warning_percent, severity=Severity.WARNING),
        ],
        floor=Severity.NORMAL,
    )


FIXED_PROFILES: Dict[SeverityProfileName, SeverityProfile] = {
    SeverityProfileName.DETAILED: DETAILED_PROFILE,
}


def resolve_profile(config: ThresholdConfig) -> SeverityProfile:
    """
    Returns the profile named by the config. The standard profile is built from
    the config's own thresholds, the others are fixed.
    """
    if config.profile == SeverityProfileName.STANDARD:
        return standard_profile(config)
    return FIXED_PROFILES[config.profile]
