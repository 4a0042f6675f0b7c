"""Tests for ServiceContainer."""

import pytest

from infrastructure.service_container import ServiceConfig, ServiceContainer
from tests.conftest import RecordingNotifier


@pytest.fixture
def config(temp_db_path):
    """Create a test configuration."""
    return ServiceConfig(
        db_path=temp_db_path,
        starting_balance=250,
        rematch_ttl_seconds=45,
    )


class TestServiceContainerInitialization:
    """Tests for ServiceContainer initialization."""

    @pytest.mark.asyncio
    async def test_initialize_creates_repositories_and_services(self, config):
        container = ServiceContainer(config)
        await container.initialize()

        assert container.ledger_repo is not None
        assert container.match_repo is not None
        assert container.settlement_repo is not None
        assert container.rematch_repo is not None

        assert container.notification_service is not None
        assert container.ledger_service is not None
        assert container.lifecycle_service is not None
        assert container.settlement_service is not None
        assert container.rematch_service is not None

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, config):
        """Calling initialize multiple times is safe."""
        container = ServiceContainer(config)

        await container.initialize()
        first = container.lifecycle_service
        await container.initialize()

        assert container.lifecycle_service is first

    @pytest.mark.asyncio
    async def test_is_initialized_flag(self, config):
        container = ServiceContainer(config)

        assert container.is_initialized is False
        await container.initialize()
        assert container.is_initialized is True


class TestServiceDependencies:
    """Tests for service wiring and configuration."""

    @pytest.mark.asyncio
    async def test_config_reaches_services(self, config):
        container = ServiceContainer(config)
        await container.initialize()

        assert container.rematch_service.ttl_seconds == 45
        account = container.ledger_service.ensure_account(100)
        assert account.available == 250

    @pytest.mark.asyncio
    async def test_services_share_dependencies(self, config):
        container = ServiceContainer(config)
        await container.initialize()

        lifecycle = container.lifecycle_service
        assert lifecycle.settlement_service is container.settlement_service
        assert lifecycle.notifications is container.notification_service
        assert container.rematch_service.lifecycle is lifecycle

    @pytest.mark.asyncio
    async def test_notifier_is_passed_through(self, config):
        notifier = RecordingNotifier()
        container = ServiceContainer(config, notifier=notifier)
        await container.initialize()

        container.notification_service.notify_user(100, "hello", "world")

        assert notifier.titles_for(100) == ["hello"]


class TestServiceContainerBotExposure:
    """Tests for expose_to_bot functionality."""

    @pytest.mark.asyncio
    async def test_expose_to_bot_sets_attributes(self, config):
        container = ServiceContainer(config)
        await container.initialize()

        class MockBot:
            pass

        bot = MockBot()
        container.expose_to_bot(bot)

        assert bot.ledger_service is container.ledger_service
        assert bot.lifecycle_service is container.lifecycle_service
        assert bot.settlement_service is container.settlement_service
        assert bot.rematch_service is container.rematch_service
        assert bot.notification_service is container.notification_service
