"""
Change feed and outbound user notifications.

Delivery is best effort: nothing here may raise into a settlement or cancel.
"""

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Callable

from repositories.interfaces import IMatchEventRepository

logger = logging.getLogger("wager_bot.services.notification")

# Event types published on the per-match feed
EVENT_PARTICIPANT_JOINED = "participant_joined"
EVENT_PARTICIPANT_LEFT = "participant_left"
EVENT_STATE_CHANGED = "state_changed"
EVENT_SETTLED = "settled"
EVENT_CORRECTED = "corrected"
EVENT_REMATCH_OFFERED = "rematch_offered"
EVENT_REMATCH_RESOLVED = "rematch_resolved"

# Subscribers registered under ALL_MATCHES see every match's events
ALL_MATCHES = 0

EventCallback = Callable[[dict], None]


class IUserNotifier(ABC):
    """Outbound "notify user" channel. Implementations must not block."""

    @abstractmethod
    def notify(self, user_id: int, title: str, message: str) -> None: ...


class LoggingUserNotifier(IUserNotifier):
    """Default notifier: writes the notification to the log."""

    def notify(self, user_id: int, title: str, message: str) -> None:
        logger.info(f"Notify {user_id}: {title} - {message}")


class NotificationService:
    """
    Publishes match events to the durable feed and in-process subscribers,
    and forwards user notifications to the configured notifier.
    """

    def __init__(
        self,
        event_repo: IMatchEventRepository | None = None,
        notifier: IUserNotifier | None = None,
    ):
        self.event_repo = event_repo
        self.notifier = notifier or LoggingUserNotifier()
        self._subscribers: dict[int, list[EventCallback]] = defaultdict(list)

    def set_notifier(self, notifier: IUserNotifier) -> None:
        self.notifier = notifier

    def subscribe(self, match_id: int, callback: EventCallback) -> Callable[[], None]:
        """Register a read-only listener. Returns a function that unsubscribes it."""
        self._subscribers[match_id].append(callback)

        def unsubscribe() -> None:
            listeners = self._subscribers.get(match_id, [])
            if callback in listeners:
                listeners.remove(callback)

        return unsubscribe

    def publish(self, match_id: int, event_type: str, payload: dict | None = None) -> int | None:
        """Record and fan out an event. Returns the stored event id, or None if storing failed."""
        event = {"match_id": match_id, "event_type": event_type, "payload": payload or {}}
        event_id = None
        if self.event_repo is not None:
            try:
                event_id = self.event_repo.append(match_id, event_type, payload)
            except Exception as e:
                logger.warning(f"Failed to store {event_type} event for match {match_id}: {e}", exc_info=True)
        event["event_id"] = event_id

        for callback in [*self._subscribers.get(match_id, []), *self._subscribers.get(ALL_MATCHES, [])]:
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Subscriber failed on {event_type} for match {match_id}: {e}", exc_info=True)
        return event_id

    def notify_user(self, user_id: int, title: str, message: str) -> bool:
        """Fire-and-forget user notification. Returns False if the notifier failed."""
        try:
            self.notifier.notify(user_id, title, message)
            return True
        except Exception as e:
            logger.warning(f"Failed to notify user {user_id} ({title}): {e}", exc_info=True)
            return False

    def get_events(self, match_id: int, since_id: int = 0, limit: int = 100) -> list[dict]:
        """Catch-up read for pollers (waiting rooms)."""
        if self.event_repo is None:
            return []
        return self.event_repo.get_since(match_id, since_id, limit)
