import sys
from pathlib import Path

import pytest

from mcp_runtime.config import RuntimeSettings, ServerConfig
from mcp_runtime.supervisor import ProcessSupervisor

MOCK_SERVER = str(Path(__file__).resolve().parent / "mock_server.py")

SAMPLE_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>ArXiv Query</title>
  <entry>
    <id>http://arxiv.org/abs/2401.00001v1</id>
    <updated>2024-01-02T18:00:00Z</updated>
    <published>2024-01-01T18:00:00Z</published>
    <title>Efficient Transformer Models for Long Documents</title>
    <summary>We study transformer models and their
      memory footprint.</summary>
    <author><name>Ada Lovelace</name></author>
    <author><name>Alan Turing</name></author>
    <category term="cs.CL"/>
    <category term="cs.LG"/>
  </entry>
  <entry>
    <id>http://arxiv.org/abs/2401.00002v2</id>
    <updated>2024-01-03T18:00:00Z</updated>
    <published>2024-01-03T18:00:00Z</published>
    <title>Graph Neural Networks Revisited</title>
    <summary>A survey that mentions transformer models once.</summary>
    <author><name>Grace Hopper</name></author>
    <category term="cs.LG"/>
  </entry>
  <entry>
    <id>http://arxiv.org/abs/2401.00003v1</id>
    <published>2024-01-04T18:00:00Z</published>
    <title>Reinforcement Learning Agents</title>
    <summary>Nothing about the query here.</summary>
  </entry>
  <entry>
    <id></id>
    <title>Entry without an id is skipped</title>
  </entry>
</feed>
"""


def mock_config(**env: str) -> ServerConfig:
    """ServerConfig launching tests/mock_server.py with the given switches."""
    return ServerConfig(
        command=sys.executable,
        args=[MOCK_SERVER],
        env=env or None,
        startup_timeout=10.0,
        request_timeout=10.0,
    )


@pytest.fixture
def settings() -> RuntimeSettings:
    return RuntimeSettings(
        tools_cache_ttl=300.0,
        liveness_interval=60.0,
        liveness_timeout=2.0,
        fallback_timeout=5.0,
        terminate_grace=2.0,
        validate_tool_names=True,
        _env_file=None,
    )


@pytest.fixture
def supervisor() -> ProcessSupervisor:
    return ProcessSupervisor(terminate_grace=2.0)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
