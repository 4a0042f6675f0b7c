from unittest.mock import MagicMock

import discord
import pytest

from utils.interaction_safety import safe_defer, safe_followup


class _StubFollowup:
    def __init__(self, error=None):
        self.last_kwargs = None
        self.error = error

    async def send(self, **kwargs):
        if self.error:
            raise self.error
        self.last_kwargs = kwargs
        return "ok"


class _StubResponse:
    def __init__(self, done=False, error=None):
        self.done = done
        self.error = error
        self.deferred_with = None

    def is_done(self):
        return self.done

    async def defer(self, ephemeral=False):
        if self.error:
            raise self.error
        self.deferred_with = {"ephemeral": ephemeral}
        self.done = True


class _StubInteraction:
    def __init__(self, response=None, followup=None):
        self.id = 123
        self.followup = followup or _StubFollowup()
        self.response = response or _StubResponse()
        self.channel = None


@pytest.mark.asyncio
async def test_safe_followup_sends_content():
    interaction = _StubInteraction()

    result = await safe_followup(interaction, content="hi", ephemeral=True)

    assert result == "ok"
    assert interaction.followup.last_kwargs["content"] == "hi"
    assert interaction.followup.last_kwargs["ephemeral"] is True
    assert "embed" not in interaction.followup.last_kwargs


@pytest.mark.asyncio
async def test_safe_followup_swallows_expired_interaction():
    expired = discord.NotFound(MagicMock(), "Unknown interaction")
    interaction = _StubInteraction(followup=_StubFollowup(error=expired))

    assert await safe_followup(interaction, content="late") is None


@pytest.mark.asyncio
async def test_safe_defer_defers_once():
    interaction = _StubInteraction()

    assert await safe_defer(interaction, ephemeral=True) is True
    assert interaction.response.deferred_with == {"ephemeral": True}
    assert await safe_defer(interaction, ephemeral=True) is True


@pytest.mark.asyncio
async def test_safe_defer_reports_expired_interaction():
    expired = discord.NotFound(MagicMock(), "Unknown interaction")
    interaction = _StubInteraction(response=_StubResponse(error=expired))

    assert await safe_defer(interaction) is False
