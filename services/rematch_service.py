"""
Rematch negotiation between the two players of a finished match.

Offers are short-lived. The deadline is checked on every read and every
response, so an offer past expires_at can never be accepted even when the
background sweep has not run.
"""

from __future__ import annotations

import logging
import time

from config import REMATCH_TTL_SECONDS
from domain.models.match import Match, MatchState
from domain.models.rematch import RematchOffer, RematchStatus
from repositories.interfaces import IMatchRepository, IRematchRepository
from services.errors import (
    InvalidState,
    NotOfferParty,
    NotParticipant,
    OfferExpired,
    OfferNotFound,
    RematchFailed,
    WagerError,
)
from services.interfaces import IRematchService
from services.match_lifecycle_service import MatchLifecycleService
from services.notification_service import (
    EVENT_REMATCH_OFFERED,
    EVENT_REMATCH_RESOLVED,
    NotificationService,
)

logger = logging.getLogger("wager_bot.services.rematch")

WITHDRAWN_REASON = "withdrawn"


class RematchService(IRematchService):
    def __init__(
        self,
        rematch_repo: IRematchRepository,
        match_repo: IMatchRepository,
        lifecycle_service: MatchLifecycleService,
        notification_service: NotificationService | None = None,
        ttl_seconds: int | None = None,
    ):
        self.rematch_repo = rematch_repo
        self.match_repo = match_repo
        self.lifecycle = lifecycle_service
        self.notifications = notification_service or NotificationService()
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else REMATCH_TTL_SECONDS

    def request(
        self,
        source_match_id: int,
        requester_id: int,
        responder_id: int,
        ttl_seconds: int | None = None,
        *,
        now: int | None = None,
    ) -> RematchOffer:
        ts = self._now(now)
        ttl = ttl_seconds if ttl_seconds is not None else self.ttl_seconds
        if ttl <= 0:
            raise WagerError("Rematch offers need a positive time to live.")
        if requester_id == responder_id:
            raise WagerError("You cannot offer a rematch to yourself.")

        source = self.lifecycle.get_match(source_match_id)
        if source.state != MatchState.COMPLETED:
            raise InvalidState(f"Match {source_match_id} is {source.state.value}; rematches need a completed match.")
        for user_id in (requester_id, responder_id):
            if self.match_repo.get_participant(source_match_id, user_id) is None:
                raise NotParticipant(source_match_id, user_id)

        offer = self.rematch_repo.create(
            source_match_id, requester_id, responder_id, ts + ttl, now=ts
        )
        logger.info(
            f"Rematch offer {offer.offer_id}: {requester_id} -> {responder_id} "
            f"for match {source_match_id}, expires at {offer.expires_at}"
        )
        self.notifications.publish(
            source_match_id,
            EVENT_REMATCH_OFFERED,
            {"offer_id": offer.offer_id, "requester_id": requester_id, "responder_id": responder_id},
        )
        self.notifications.notify_user(
            responder_id,
            "Rematch offer",
            f"<@{requester_id}> wants a rematch of match #{source_match_id}. "
            f"Accept within {ttl}s with offer #{offer.offer_id}.",
        )
        return offer

    def accept(self, offer_id: int, user_id: int, *, now: int | None = None) -> Match:
        """
        Accept as the responder and start the rematch with identical terms.

        Raises:
            NotOfferParty: caller is not the responder
            OfferExpired: deadline passed (checked here, not only by the sweep)
            InvalidState: offer already answered
            RematchFailed: a player could not join; the offer is declined
        """
        ts = self._now(now)
        offer = self._require_offer(offer_id)
        if user_id != offer.responder_id:
            raise NotOfferParty("Only the invited player can accept this rematch.")
        if not self.rematch_repo.resolve(offer_id, RematchStatus.ACCEPTED, now=ts, require_unexpired=True):
            self._raise_for_unanswerable(offer_id, ts)

        terms = self.lifecycle.clone_terms(offer.source_match_id)
        new_match = self.lifecycle.create_match(
            offer.requester_id,
            terms.kind,
            2,
            terms.entry_fee,
            terms.prize_config,
            title=f"Rematch of #{offer.source_match_id}",
            auto_activate=True,
            source_match_id=offer.source_match_id,
            now=ts,
        )
        self.rematch_repo.set_new_match(offer_id, new_match.match_id)

        try:
            for player_id in (offer.requester_id, offer.responder_id):
                self.lifecycle.join(new_match.match_id, player_id, now=ts)
        except WagerError as e:
            reason = f"<@{player_id}> could not join: {e}"
            self._unwind_failed_rematch(offer, new_match.match_id, reason, ts)
            raise RematchFailed(offer_id, reason, cause_code=e.error_code) from e

        logger.info(f"Rematch offer {offer_id} accepted, new match {new_match.match_id}")
        self.notifications.publish(
            offer.source_match_id,
            EVENT_REMATCH_RESOLVED,
            {"offer_id": offer_id, "status": RematchStatus.ACCEPTED.value, "new_match_id": new_match.match_id},
        )
        self.notifications.notify_user(
            offer.requester_id,
            "Rematch accepted",
            f"Your rematch is on: match #{new_match.match_id}.",
        )
        return self.lifecycle.get_match(new_match.match_id)

    def decline(
        self, offer_id: int, user_id: int, reason: str | None = None, *, now: int | None = None
    ) -> RematchOffer:
        ts = self._now(now)
        offer = self._require_offer(offer_id)
        if user_id != offer.responder_id:
            raise NotOfferParty("Only the invited player can decline this rematch.")
        if not self.rematch_repo.resolve(
            offer_id, RematchStatus.DECLINED, now=ts, require_unexpired=True, reason=reason or "declined"
        ):
            self._raise_for_unanswerable(offer_id, ts)
        self._publish_resolved(offer, RematchStatus.DECLINED)
        self.notifications.notify_user(
            offer.requester_id, "Rematch declined", f"Your rematch offer #{offer_id} was declined."
        )
        return self._require_offer(offer_id)

    def cancel(self, offer_id: int, user_id: int, *, now: int | None = None) -> RematchOffer:
        """Requester withdraws a pending offer; stored as declined."""
        ts = self._now(now)
        offer = self._require_offer(offer_id)
        if user_id != offer.requester_id:
            raise NotOfferParty("Only the player who offered the rematch can withdraw it.")
        if not self.rematch_repo.resolve(
            offer_id, RematchStatus.DECLINED, now=ts, require_unexpired=True, reason=WITHDRAWN_REASON
        ):
            self._raise_for_unanswerable(offer_id, ts)
        self._publish_resolved(offer, RematchStatus.DECLINED)
        return self._require_offer(offer_id)

    def get_offer(self, offer_id: int, *, now: int | None = None) -> RematchOffer:
        """Current offer; a pending offer past its deadline is stored and returned as expired."""
        ts = self._now(now)
        offer = self._require_offer(offer_id)
        if offer.status == RematchStatus.PENDING and offer.is_expired_at(ts):
            if self.rematch_repo.mark_expired(offer_id, ts):
                self._publish_resolved(offer, RematchStatus.EXPIRED)
            offer = self._require_offer(offer_id)
        return offer

    def get_pending_for_user(self, user_id: int, *, now: int | None = None) -> list[RematchOffer]:
        ts = self._now(now)
        return [o for o in self.rematch_repo.get_pending_for_user(user_id) if not o.is_expired_at(ts)]

    def expire_stale(self, now: int | None = None) -> list[RematchOffer]:
        """Background sweep. Correctness never depends on it running."""
        expired = self.rematch_repo.expire_stale(self._now(now))
        for offer in expired:
            self._publish_resolved(offer, RematchStatus.EXPIRED)
        if expired:
            logger.info(f"Expired {len(expired)} stale rematch offer(s)")
        return expired

    # --------------------------------------------------------------- helpers

    @staticmethod
    def _now(now: int | None) -> int:
        return int(time.time()) if now is None else now

    def _require_offer(self, offer_id: int) -> RematchOffer:
        offer = self.rematch_repo.get(offer_id)
        if offer is None:
            raise OfferNotFound(offer_id)
        return offer

    def _raise_for_unanswerable(self, offer_id: int, now: int) -> None:
        current = self._require_offer(offer_id)
        if current.is_expired_at(now):
            if self.rematch_repo.mark_expired(offer_id, now):
                self._publish_resolved(current, RematchStatus.EXPIRED)
            raise OfferExpired(offer_id)
        raise InvalidState(f"Rematch offer {offer_id} is already {current.status.value}.")

    def _unwind_failed_rematch(self, offer: RematchOffer, new_match_id: int, reason: str, now: int) -> None:
        logger.warning(f"Rematch offer {offer.offer_id} failed: {reason}")
        try:
            self.lifecycle.cancel(new_match_id, reason="rematch_failed", now=now)
        except WagerError as cancel_error:
            # Match keeps its state; an operator can retry /cancelmatch
            logger.error(f"Could not cancel failed rematch {new_match_id}: {cancel_error}")
        self.rematch_repo.set_declined_after_accept(offer.offer_id, reason, now=now)
        self._publish_resolved(offer, RematchStatus.DECLINED, reason=reason)
        for player_id in (offer.requester_id, offer.responder_id):
            self.notifications.notify_user(player_id, "Rematch cancelled", reason)

    def _publish_resolved(self, offer: RematchOffer, status: RematchStatus, reason: str | None = None) -> None:
        self.notifications.publish(
            offer.source_match_id,
            EVENT_REMATCH_RESOLVED,
            {"offer_id": offer.offer_id, "status": status.value, "reason": reason},
        )
