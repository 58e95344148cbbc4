"""Test configuration: package imports and shared roster fixtures."""

import os
import sys

import pytest

# Add the repository root (the directory containing this file) to ``sys.path``
# if it is not already present.  This mirrors the behaviour of running the
# tests via ``python -m pytest`` where the working directory is automatically on
# the import path.
ROOT_DIR = os.path.abspath(os.path.dirname(__file__))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from roster_bot.config import GuildConfig  # noqa: E402
from roster_bot.core.registry import TeamRegistry  # noqa: E402
from roster_bot.core.storage import JSONStorage  # noqa: E402

GUILD = 1000


@pytest.fixture
def storage(tmp_path):
    return JSONStorage(tmp_path / "data")


@pytest.fixture
def registry(storage):
    """Registry for a guild with two-member teams and the ``g`` prefix."""
    storage.save_config(GUILD, GuildConfig(team_capacity=2, team_prefix="g"))
    reg = TeamRegistry(storage)
    for sid, name in [(1, "Alice"), (2, "Bob"), (3, "Carol"), (4, "Dave")]:
        reg.get_or_create_student(sid, name)
    return reg
