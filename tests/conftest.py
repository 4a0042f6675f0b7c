"""
Pytest fixtures for tests.

Uses a session-scoped schema template so migrations run once; each test
copies the resulting database file instead of re-initializing it.
"""

import shutil

import pytest

from database import Database
from repositories.ledger_repository import LedgerRepository
from repositories.match_event_repository import MatchEventRepository
from repositories.match_repository import MatchRepository
from repositories.rematch_repository import RematchRepository
from repositories.settlement_repository import SettlementRepository
from services.ledger_service import LedgerService
from services.match_lifecycle_service import MatchLifecycleService
from services.notification_service import IUserNotifier, NotificationService
from services.rematch_service import RematchService
from services.settlement_service import SettlementService

# Fixed clock for deterministic timestamps
NOW = 1_700_000_000


class RecordingNotifier(IUserNotifier):
    """Collects outbound notifications instead of sending them."""

    def __init__(self):
        self.sent: list[tuple[int, str, str]] = []

    def notify(self, user_id: int, title: str, message: str) -> None:
        self.sent.append((user_id, title, message))

    def titles_for(self, user_id: int) -> list[str]:
        return [title for uid, title, _ in self.sent if uid == user_id]


@pytest.fixture(scope="session")
def _schema_template_path(tmp_path_factory):
    """
    Create a schema template database once per test session.
    """
    template_dir = tmp_path_factory.mktemp("schema_template")
    template_path = str(template_dir / "template.db")
    Database(template_path)
    yield template_path


@pytest.fixture
def temp_db_path(tmp_path):
    """Create a temporary database path (no schema)."""
    path = str(tmp_path / "temp.db")
    yield path


@pytest.fixture
def repo_db_path(_schema_template_path, tmp_path):
    """
    Create a temporary database with initialized schema for repository tests.
    """
    test_db_path = str(tmp_path / "test.db")
    shutil.copy2(_schema_template_path, test_db_path)
    yield test_db_path


@pytest.fixture
def ledger_repo(repo_db_path):
    return LedgerRepository(repo_db_path)


@pytest.fixture
def match_repo(repo_db_path, ledger_repo):
    return MatchRepository(repo_db_path, ledger_repo=ledger_repo)


@pytest.fixture
def settlement_repo(repo_db_path, ledger_repo):
    return SettlementRepository(repo_db_path, ledger_repo=ledger_repo)


@pytest.fixture
def rematch_repo(repo_db_path):
    return RematchRepository(repo_db_path)


@pytest.fixture
def event_repo(repo_db_path):
    return MatchEventRepository(repo_db_path)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def services(repo_db_path, ledger_repo, match_repo, settlement_repo, rematch_repo, event_repo, notifier):
    """Fully wired engine on a temp database, mirroring ServiceContainer."""
    notifications = NotificationService(event_repo=event_repo, notifier=notifier)
    ledger_service = LedgerService(ledger_repo, starting_balance=0)
    settlement_service = SettlementService(
        match_repo, settlement_repo, notification_service=notifications, capture_attempts=3
    )
    lifecycle_service = MatchLifecycleService(
        match_repo,
        ledger_repo,
        settlement_repo,
        notification_service=notifications,
        settlement_service=settlement_service,
        max_capacity=128,
        fee_fraction="0.10",
        auto_activate_two_party=True,
    )
    rematch_service = RematchService(
        rematch_repo,
        match_repo,
        lifecycle_service,
        notification_service=notifications,
        ttl_seconds=30,
    )

    yield {
        "ledger_service": ledger_service,
        "lifecycle_service": lifecycle_service,
        "settlement_service": settlement_service,
        "rematch_service": rematch_service,
        "notifications": notifications,
        "notifier": notifier,
        "ledger_repo": ledger_repo,
        "match_repo": match_repo,
        "settlement_repo": settlement_repo,
        "rematch_repo": rematch_repo,
        "db_path": repo_db_path,
    }


def fund(ledger_repo, user_ids, balance=100):
    """Open accounts for user_ids with the given balance."""
    for user_id in user_ids:
        ledger_repo.open_account(user_id, balance, now=NOW)
