"""
Readiness detection for freshly spawned tool servers.

Servers are inconsistent about how they announce that they are up. Some
answer the initialize handshake promptly; others only print a banner such
as "Research server started successfully" on stderr and may be slow to
answer the handshake. A session asks its strategy after every handshake
response and every stderr line whether the server can be considered ready.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

DEFAULT_READY_BANNER = "server started successfully"


class ReadinessStrategy(ABC):
    """Decides when a starting session may accept calls."""

    name: str = ""

    def on_handshake(self, result: Any) -> bool:
        """Called with the result of the initialize response."""
        return False

    def on_stderr(self, line: str) -> bool:
        """Called with each decoded diagnostic line."""
        return False

    @abstractmethod
    def describe(self) -> str:
        ...


class ResponseReadiness(ReadinessStrategy):
    """Ready once the initialize request is answered."""

    name = "response"

    def on_handshake(self, result: Any) -> bool:
        return True

    def describe(self) -> str:
        return "initialize response"


class BannerReadiness(ReadinessStrategy):
    """Ready once a marker string shows up on the diagnostic stream."""

    name = "banner"

    def __init__(self, marker: str = DEFAULT_READY_BANNER, case_sensitive: bool = False):
        if not marker:
            raise ValueError("BannerReadiness needs a non-empty marker")
        self.marker = marker
        self.case_sensitive = case_sensitive

    def on_stderr(self, line: str) -> bool:
        if self.case_sensitive:
            return self.marker in line
        return self.marker.lower() in line.lower()

    def describe(self) -> str:
        return f"banner {self.marker!r}"


class AnyReadiness(ReadinessStrategy):
    """Ready as soon as any of the wrapped strategies says so."""

    name = "any"

    def __init__(self, *strategies: ReadinessStrategy):
        if not strategies:
            raise ValueError("AnyReadiness needs at least one strategy")
        self.strategies = strategies

    def on_handshake(self, result: Any) -> bool:
        return any(s.on_handshake(result) for s in self.strategies)

    def on_stderr(self, line: str) -> bool:
        return any(s.on_stderr(line) for s in self.strategies)

    def describe(self) -> str:
        return " or ".join(s.describe() for s in self.strategies)


def default_readiness(banner: str | None = DEFAULT_READY_BANNER) -> ReadinessStrategy:
    """Handshake response or banner, whichever comes first."""
    if not banner:
        return ResponseReadiness()
    return AnyReadiness(ResponseReadiness(), BannerReadiness(banner))
