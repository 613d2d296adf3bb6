"""
Pytest configuration and fixtures for memrecall tests.
"""

import os
import sys
from pathlib import Path

import pytest
from hypothesis import Phase, Verbosity, settings

# Project root for the memrecall package, tests dir for the shared factories
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

# -----------------------------------------------------------------------------
# Hypothesis profiles
# -----------------------------------------------------------------------------
# Usage: HYPOTHESIS_PROFILE=fast pytest tests/
#
#   fast - 10 examples, generate only
#   dev  - 50 examples (default)
#   ci   - 200 examples, all phases
# -----------------------------------------------------------------------------

settings.register_profile(
    "fast",
    max_examples=10,
    phases=[Phase.generate],
    verbosity=Verbosity.quiet,
    deadline=None,
)

settings.register_profile(
    "dev",
    max_examples=50,
    phases=[Phase.generate, Phase.target, Phase.shrink],
    verbosity=Verbosity.normal,
    deadline=None,
)

settings.register_profile(
    "ci",
    max_examples=200,
    phases=[Phase.generate, Phase.target, Phase.shrink, Phase.explain],
    verbosity=Verbosity.normal,
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "dev"))

from memory_factories import NOW, FakeEmbedder, build_store, make_config  # noqa: E402

from memrecall.services.retrieval import RetrievalService  # noqa: E402
from memrecall.services.recall_log import InMemoryRecallLog  # noqa: E402


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def store():
    """Store seeded with the standard memories and entities."""
    return build_store()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def recall_log():
    return InMemoryRecallLog(max_entries=100)


@pytest.fixture
def service(store, embedder, recall_log):
    svc = RetrievalService(store=store, embedder=embedder, recall_log=recall_log, app_config=make_config())
    yield svc
    svc.close()
