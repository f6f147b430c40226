"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from wrc.scan.checkpoint import MemoryCheckpointStore
from wrc.schemas.scan import PageContext, Rule, ScanResult
from wrc.shared.llm_client import LLMClient


def make_rules(n: int, prefix: str = "r") -> list[Rule]:
    return [
        Rule(id=f"{prefix}{i}", title=f"Rule {i}", description=f"Description for rule {i}")
        for i in range(1, n + 1)
    ]


def make_completion(text: str):
    """Create a mock OpenAI chat completion response."""
    message = SimpleNamespace(content=text, tool_calls=None)
    choice = SimpleNamespace(message=message)
    usage = SimpleNamespace(prompt_tokens=120, completion_tokens=30)
    return SimpleNamespace(choices=[choice], usage=usage)


class FakeClock:
    """Monotonic clock that only moves when told to (or when slept on)."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeRenderer:
    """Renderer stand-in returning a fixed context and counting calls."""

    def __init__(self, text: str = "Welcome to Example Domain", *, fail: Exception | None = None) -> None:
        self.text = text
        self.fail = fail
        self.calls: list[str] = []

    async def render(self, url: str) -> PageContext:
        self.calls.append(url)
        if self.fail is not None:
            raise self.fail
        return PageContext(
            url=url,
            visible_text=self.text,
            structured_signals="Buttons/Links: More information...\nHeadings: Example Domain",
        )


class FakeJudge:
    """Judge stand-in: passes every rule whose id is not in ``failing``."""

    def __init__(self, failing: set[str] | None = None, clock: FakeClock | None = None) -> None:
        self.failing = failing or set()
        self.clock = clock
        self.calls: list[tuple[str, float | None]] = []

    async def judge(self, context: str, rule: Rule, url: str) -> ScanResult:
        self.calls.append((rule.id, self.clock() if self.clock else None))
        passed = rule.id not in self.failing
        return ScanResult(
            rule_id=rule.id, rule_title=rule.title, passed=passed,
            reason="Looks right" if passed else "Missing",
        )


@pytest.fixture
def rules() -> list[Rule]:
    return make_rules(7)


@pytest.fixture
def store() -> MemoryCheckpointStore:
    return MemoryCheckpointStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mock_llm_client() -> LLMClient:
    """Return an LLMClient with a mocked OpenAI SDK underneath."""
    client = LLMClient.__new__(LLMClient)
    client._client = AsyncMock()
    client.model = "gpt-4o-mini"
    client.seed = 42
    client.is_openrouter = False
    return client


@pytest.fixture
def tmp_config(tmp_path: Path) -> Path:
    """Write a minimal valid config YAML and return its path."""
    cfg = tmp_path / "config.yml"
    cfg.write_text(
        """\
target_url: "https://example.com"
batch_size: 3
min_request_interval: 0
checkpoint_dir: "{ckpt}"
output_directory: "{out}"
""".format(ckpt=str(tmp_path / "ckpt"), out=str(tmp_path / "output"))
    )
    return cfg
