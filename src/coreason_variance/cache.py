# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_variance

import time
from typing import Callable, Dict, Optional, Protocol, Tuple

from coreason_variance.models import AnalysisResult
from coreason_variance.utils.logger import logger


def generate_cache_key(organization_id: str, board_id: str, period: str) -> str:
    return f"variance:{organization_id}:{board_id}:{period}"


class AnalysisCache(Protocol):
    """
    Storage for recent analysis results, keyed by generate_cache_key.
    """

    async def get(self, key: str) -> Optional[AnalysisResult]: ...

    async def set(self, key: str, result: AnalysisResult) -> None: ...

    async def delete(self, key: str) -> None: ...


class InMemoryAnalysisCache:
    """
    Process-local AnalysisCache with a fixed time-to-live.

    Results are stored as JSON so a cached result is an independent copy.
    Expired entries are dropped when read, or in bulk by cleanup().
    """

    def __init__(self, ttl_seconds: float = 3600, clock: Callable[[], float] = time.monotonic) -> None:
        """
        Args:
            ttl_seconds: Lifetime of an entry. Default is 1 hour.
            clock: Source of the current time in seconds. Defaults to time.monotonic.
        """
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[float, str]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> Optional[AnalysisResult]:
        entry = self._entries.get(key)
        if entry is None:
            logger.debug(f"Cache miss for {key}")
            return None
        expires_at, payload = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            logger.debug(f"Cache entry for {key} expired")
            return None
        logger.debug(f"Cache hit for {key}")
        return AnalysisResult.model_validate_json(payload)

    async def set(self, key: str, result: AnalysisResult) -> None:
        self._entries[key] = (self._clock() + self.ttl_seconds, result.model_dump_json())

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def cleanup(self) -> int:
        """
        Drops every expired entry.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        expired = [key for key, (expires_at, _) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)
