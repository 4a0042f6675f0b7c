"""
Service container for dependency injection and initialization.

This module centralizes repository and service wiring so bot.py and tests
build the engine the same way.

Usage:
    container = ServiceContainer(ServiceConfig(db_path="wager.db"))
    await container.initialize()

    # Access services
    lifecycle = container.lifecycle_service
    settlement = container.settlement_service
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import config

if TYPE_CHECKING:
    from services.ledger_service import LedgerService
    from services.match_lifecycle_service import MatchLifecycleService
    from services.notification_service import IUserNotifier, NotificationService
    from services.rematch_service import RematchService
    from services.settlement_service import SettlementService

from database import Database

# Repositories
from repositories.ledger_repository import LedgerRepository
from repositories.match_event_repository import MatchEventRepository
from repositories.match_repository import MatchRepository
from repositories.rematch_repository import RematchRepository
from repositories.settlement_repository import SettlementRepository

logger = logging.getLogger("wager_bot.infrastructure.container")


@dataclass
class RepositoryContainer:
    """Container for all repositories."""

    ledger: LedgerRepository | None = None
    match: MatchRepository | None = None
    settlement: SettlementRepository | None = None
    rematch: RematchRepository | None = None
    events: MatchEventRepository | None = None


@dataclass
class ServiceConfig:
    """Configuration for service initialization. Defaults come from config.py."""

    # Database
    db_path: str = config.DB_PATH

    # Wallets
    starting_balance: int = config.STARTING_BALANCE

    # Matches
    max_match_capacity: int = config.MAX_MATCH_CAPACITY
    fee_fraction: str = config.DEFAULT_FEE_FRACTION
    auto_activate_two_party: bool = config.AUTO_ACTIVATE_TWO_PARTY

    # Settlement
    capture_attempts: int = config.SETTLEMENT_CAPTURE_ATTEMPTS

    # Rematch
    rematch_ttl_seconds: int = config.REMATCH_TTL_SECONDS


class ServiceContainer:
    """
    Central container for all application services.

    Handles proper initialization order and dependency injection.
    """

    def __init__(self, config: ServiceConfig | None = None, notifier: "IUserNotifier | None" = None):
        """
        Initialize the container with configuration.

        Args:
            config: Service configuration (uses defaults if None)
            notifier: Outbound user notifier (logs only if None)
        """
        self.config = config or ServiceConfig()
        self._notifier = notifier
        self._initialized = False
        self._repos = RepositoryContainer()

        self._database: Database | None = None
        self._services: dict[str, Any] = {}

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """
        Initialize all services in correct order.

        This method is idempotent - calling it multiple times has no effect.
        """
        if self._initialized:
            logger.debug("ServiceContainer already initialized, skipping")
            return

        logger.info("Initializing ServiceContainer...")
        self._database = Database(self.config.db_path)
        self._init_repositories()
        self._init_services()
        self._initialized = True
        logger.info("ServiceContainer initialization complete")

    def _init_repositories(self) -> None:
        logger.debug("Initializing repositories")

        db_path = self.config.db_path
        ledger = LedgerRepository(db_path)
        self._repos.ledger = ledger
        self._repos.match = MatchRepository(db_path, ledger_repo=ledger)
        self._repos.settlement = SettlementRepository(db_path, ledger_repo=ledger)
        self._repos.rematch = RematchRepository(db_path)
        self._repos.events = MatchEventRepository(db_path)

    def _init_services(self) -> None:
        """Services in dependency order: notifications, ledger, settlement, lifecycle, rematch."""
        logger.debug("Initializing services")

        from services.ledger_service import LedgerService
        from services.match_lifecycle_service import MatchLifecycleService
        from services.notification_service import NotificationService
        from services.rematch_service import RematchService
        from services.settlement_service import SettlementService

        notifications = NotificationService(event_repo=self._repos.events, notifier=self._notifier)
        self._services["notification"] = notifications

        self._services["ledger"] = LedgerService(
            ledger_repo=self._repos.ledger,
            starting_balance=self.config.starting_balance,
        )

        settlement = SettlementService(
            match_repo=self._repos.match,
            settlement_repo=self._repos.settlement,
            notification_service=notifications,
            capture_attempts=self.config.capture_attempts,
        )
        self._services["settlement"] = settlement

        lifecycle = MatchLifecycleService(
            match_repo=self._repos.match,
            ledger_repo=self._repos.ledger,
            settlement_repo=self._repos.settlement,
            notification_service=notifications,
            settlement_service=settlement,
            max_capacity=self.config.max_match_capacity,
            fee_fraction=self.config.fee_fraction,
            auto_activate_two_party=self.config.auto_activate_two_party,
        )
        self._services["lifecycle"] = lifecycle

        self._services["rematch"] = RematchService(
            rematch_repo=self._repos.rematch,
            match_repo=self._repos.match,
            lifecycle_service=lifecycle,
            notification_service=notifications,
            ttl_seconds=self.config.rematch_ttl_seconds,
        )

    # =========================================================================
    # Accessors
    # =========================================================================

    @property
    def ledger_repo(self) -> LedgerRepository:
        return self._repos.ledger

    @property
    def match_repo(self) -> MatchRepository:
        return self._repos.match

    @property
    def settlement_repo(self) -> SettlementRepository:
        return self._repos.settlement

    @property
    def rematch_repo(self) -> RematchRepository:
        return self._repos.rematch

    @property
    def notification_service(self) -> "NotificationService | None":
        return self._services.get("notification")

    @property
    def ledger_service(self) -> "LedgerService | None":
        return self._services.get("ledger")

    @property
    def lifecycle_service(self) -> "MatchLifecycleService | None":
        return self._services.get("lifecycle")

    @property
    def settlement_service(self) -> "SettlementService | None":
        return self._services.get("settlement")

    @property
    def rematch_service(self) -> "RematchService | None":
        return self._services.get("rematch")

    def expose_to_bot(self, bot) -> None:
        """
        Expose services on the bot object; cogs read them with getattr(bot, ...).
        """
        bot.ledger_repo = self.ledger_repo
        bot.match_repo = self.match_repo

        bot.notification_service = self.notification_service
        bot.ledger_service = self.ledger_service
        bot.lifecycle_service = self.lifecycle_service
        bot.settlement_service = self.settlement_service
        bot.rematch_service = self.rematch_service

        logger.info("Services exposed to bot object")
