"""Shared fixtures for conflict resolver tests."""

import pytest

from conflict_engine import ConflictSession
from line_buffer import LineBuffer
from resolver_config import ResolverConfig

SAMPLE = ["<<<<<<< A", "incoming1", "incoming2", "=======", "current1", ">>>>>>> B"]
SECOND_BLOCK = ["<<<<<<< C", "x", "=======", "y", ">>>>>>> D"]


def make_buffer(lines: list[str]) -> LineBuffer:
    return LineBuffer("\n".join(lines))


@pytest.fixture
def sample_buffer() -> LineBuffer:
    """Buffer holding exactly one conflict block."""
    return make_buffer(SAMPLE)


@pytest.fixture
def two_block_buffer() -> LineBuffer:
    """Buffer with two independent conflict blocks around a shared line."""
    return make_buffer(SAMPLE + ["middle"] + SECOND_BLOCK)


@pytest.fixture
def config(tmp_path) -> ResolverConfig:
    return ResolverConfig(log_file=str(tmp_path / "resolver.log"))


@pytest.fixture
def session(sample_buffer, config) -> ConflictSession:
    """Attached session over the sample buffer, scanned once."""
    session = ConflictSession(sample_buffer, config).attach()
    session.scan()
    return session
