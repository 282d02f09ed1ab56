"""Shared pytest fixtures for l10ntm tests.

Provides temporary TM databases, file-system TM stores, job builders and
common utilities.
"""

from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner

from l10ntm.core.models import TU, Job, JobStatus
from l10ntm.core.normalized import NormalizedString, source_guid
from l10ntm.memory.dal import TMDatabase
from l10ntm.memory.manager import TMManager
from l10ntm.stores.jsonl import JsonlTmStore
from l10ntm.utils.config import TMContext, reset_settings

DEFAULT_UPDATED_AT = "2024-01-01T00:00:00.000Z"

# ============================================================================
# Builders
# ============================================================================


def make_tu(
    rid: str,
    sid: str,
    nsrc: NormalizedString | str,
    ntgt: NormalizedString | str | None,
    q: int = 80,
    ts: int = 1000,
    **extra: Any,
) -> TU:
    """Build a paired TU whose guid is derived from rid, sid and source."""
    nsrc_parts = [nsrc] if isinstance(nsrc, str) else nsrc
    data: dict[str, Any] = {
        "guid": source_guid(rid, sid, nsrc_parts),
        "rid": rid,
        "sid": sid,
        "nsrc": nsrc_parts,
        "q": q,
        "ts": ts,
        **extra,
    }
    if ntgt is None:
        data["inflight"] = True
    else:
        data["ntgt"] = [ntgt] if isinstance(ntgt, str) else ntgt
    return TU.as_pair(data)


def make_job(
    job_guid: str,
    tus: list[TU],
    source_lang: str = "en",
    target_lang: str = "fr",
    updated_at: str = DEFAULT_UPDATED_AT,
    translation_provider: str | None = "mt",
    **extra: Any,
) -> Job:
    """Build a finished job carrying the given TUs."""
    return Job.model_validate(
        {
            "jobGuid": job_guid,
            "sourceLang": source_lang,
            "targetLang": target_lang,
            "status": JobStatus.DONE.value,
            "updatedAt": updated_at,
            "translationProvider": translation_provider,
            "tus": [tu.model_copy(update={"job_guid": job_guid}) for tu in tus],
            **extra,
        }
    )


def simple_job(job_guid: str, count: int = 2, **kwargs: Any) -> Job:
    """Job with ``count`` plain-text TUs named after the job."""
    tus = [
        make_tu("app.json", f"{job_guid}.{i}", f"Source {job_guid} {i}", f"Cible {job_guid} {i}")
        for i in range(count)
    ]
    return make_job(job_guid, tus, **kwargs)


@pytest.fixture
def tu_factory() -> Callable[..., TU]:
    """Provide the TU builder.

    Example:
        def test_something(tu_factory):
            tu = tu_factory("home.json", "title", "Home", "Accueil", q=90)
    """
    return make_tu


@pytest.fixture
def job_factory() -> Callable[..., Job]:
    """Provide the job builder."""
    return make_job


@pytest.fixture
def simple_job_factory() -> Callable[..., Job]:
    return simple_job


# ============================================================================
# Storage Fixtures
# ============================================================================


@pytest.fixture
def tm_db(tmp_path: Path) -> Iterator[TMDatabase]:
    """Provide an initialized SQLite TM database in a temporary directory."""
    db = TMDatabase(tmp_path / "local.db")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def other_db(tmp_path: Path) -> Iterator[TMDatabase]:
    """Provide a second, independent TM database."""
    db = TMDatabase(tmp_path / "other.db")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def store_dir(tmp_path: Path) -> Path:
    return tmp_path / "store"


@pytest.fixture
def jsonl_store(store_dir: Path) -> JsonlTmStore:
    """Provide a read-write, language-partitioned JSONL store."""
    return JsonlTmStore("shared", store_dir)


@pytest.fixture
def manager(tm_db: TMDatabase, jsonl_store: JsonlTmStore) -> TMManager:
    """Provide a manager over the local database with the shared store configured."""
    return TMManager(tm_db, [jsonl_store], TMContext(regression=True, parallelism=2))


@pytest.fixture
def other_manager(other_db: TMDatabase, jsonl_store: JsonlTmStore) -> TMManager:
    """Provide a manager over a second database sharing the same store."""
    return TMManager(other_db, [jsonl_store], TMContext(regression=True, parallelism=2))


# ============================================================================
# CLI Fixtures
# ============================================================================


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide Typer CLI test runner."""
    return CliRunner()


@pytest.fixture
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    """Point the settings at a temporary base directory with one store.

    Returns:
        The store directory
    """
    store_path = tmp_path / "cli-store"
    monkeypatch.setenv("L10NTM_BASE_DIR", str(tmp_path / "cli-base"))
    monkeypatch.setenv(
        "L10NTM_TM_STORES",
        f'[{{"id": "shared", "base_dir": "{store_path.as_posix()}", "partitioning": "job"}}]',
    )
    monkeypatch.setenv("L10NTM_REGRESSION", "true")
    reset_settings()
    yield store_path
    reset_settings()


# ============================================================================
# Pytest Configuration Hooks
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest environment."""


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Modify test collection to auto-mark tests based on location."""
    for item in items:
        # Auto-mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "e2e" in str(item.fspath):
            item.add_marker(pytest.mark.e2e)


def pytest_addoption(parser: pytest.Parser) -> None:
    """Add custom command line options."""
    parser.addoption(
        "--run-e2e",
        action="store_true",
        default=False,
        help="Run E2E tests",
    )
    parser.addoption(
        "--run-slow",
        action="store_true",
        default=False,
        help="Run slow tests",
    )


def pytest_runtest_setup(item: pytest.Item) -> None:
    """Skip tests based on markers and command line options."""
    # Skip E2E tests unless --run-e2e is specified
    if "e2e" in item.keywords and not item.config.getoption("--run-e2e"):
        pytest.skip("E2E tests skipped (use --run-e2e to run)")

    # Skip slow tests unless --run-slow is specified
    if "slow" in item.keywords and not item.config.getoption("--run-slow"):
        pytest.skip("Slow tests skipped (use --run-slow to run)")
