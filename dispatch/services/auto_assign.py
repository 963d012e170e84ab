"""
Auto-assign matcher.

Each sweep pairs pending, unassigned requests (STAT first, then oldest)
with available transporters (longest-available first) and hands each pair
to :func:`dispatch.services.lifecycle.assign` as the system actor.  A
transporter is consumed at most once per sweep.  Losing a race against a
manual assignment or a claim is not an error: the pair is skipped, and a
transporter who stopped being available is dropped from the pool.

Auto-assignments not accepted within ``auto_assign_acceptance_timeout_ms``
are returned to the queue and offered to someone else at the start of the
next sweep.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from django.db.models import Case, IntegerField, Value, When
from django.utils import timezone

from dispatch.exceptions import Conflict, InvalidTransition, TransporterUnavailable
from dispatch.models import RoleLevel, TransportRequest, TransporterStatus, User
from dispatch.realtime.fanout import publish
from dispatch.services import config, lifecycle

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    assigned: list[tuple[int, int]] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    expired: list[dict] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.assigned)


def pending_queue():
    """Pending, unassigned requests in the order they should be served."""
    stat_first = Case(
        When(priority=TransportRequest.PRIORITY_STAT, then=Value(0)),
        default=Value(1),
        output_field=IntegerField(),
    )
    return (TransportRequest.objects
            .filter(status=TransportRequest.STATUS_PENDING, assigned_to__isnull=True)
            .annotate(_rank=stat_first)
            .order_by('_rank', 'created_at', 'id'))


def available_pool() -> list[User]:
    """Active transporters who are ``available``, longest-available first."""
    statuses = (TransporterStatus.objects
                .select_related('user')
                .filter(status=TransporterStatus.STATUS_AVAILABLE,
                        user__is_active=True,
                        user__role=RoleLevel.transporter.name)
                .order_by('updated_at', 'user_id'))
    return [ts.user for ts in statuses]


class AutoAssignMatcher:
    """Greedy FIFO matcher with optional floor affinity."""

    def __init__(self, floor_affinity: Optional[bool] = None):
        self._floor_affinity = floor_affinity

    @property
    def floor_affinity(self) -> bool:
        if self._floor_affinity is None:
            return config.auto_assign_floor_affinity()
        return self._floor_affinity

    def _pick(self, req: TransportRequest, pool: list[User]) -> User:
        if self.floor_affinity:
            for candidate in pool:
                if candidate.primary_floor == req.origin_floor:
                    return candidate
        return pool[0]

    def _assign_one(self, req: TransportRequest, pool: list[User], result: SweepResult,
                    now: Optional[datetime] = None) -> Optional[User]:
        """Try candidates for ``req`` until one sticks; taken transporters leave ``pool``."""
        while pool:
            candidate = self._pick(req, pool)
            try:
                lifecycle.assign(req.pk, None, candidate, method='auto', now=now)
            except TransporterUnavailable:
                logger.info('Auto-assign dropped %s from the pool: no longer available', candidate.username)
                pool.remove(candidate)
                continue
            except (Conflict, InvalidTransition) as exc:
                logger.info('Auto-assign skipped request %s: %s', req.pk, exc.detail)
                result.skipped.append(req.pk)
                return None
            pool.remove(candidate)
            result.assigned.append((req.pk, candidate.pk))
            return candidate
        return None

    def _assign_in_order(self, pending, pool: list[User]) -> SweepResult:
        result = SweepResult()
        pool = list(pool)
        for req in pending:
            if not pool:
                break
            self._assign_one(req, pool, result)
        return result

    def expire_unaccepted(self, now: Optional[datetime] = None) -> list[dict]:
        """Re-pair auto-assigned requests whose assignee has not accepted in time.

        The request goes back to ``pending`` and is offered to the next
        transporter, never the one who timed out.  One ``auto_assign_timeout``
        event is published per expired request.
        """
        now = now or timezone.now()
        cutoff = now - timedelta(seconds=config.auto_assign_acceptance_timeout_seconds())
        stale = (TransportRequest.objects
                 .filter(status=TransportRequest.STATUS_ASSIGNED, assignment_method='auto',
                         assigned_at__lt=cutoff)
                 .order_by('assigned_at', 'id'))
        expired = []
        for req in stale:
            previous_id = req.assigned_to_id
            try:
                req = lifecycle.release_auto_assignment(req.pk, now=now)
            except (Conflict, InvalidTransition) as exc:
                logger.info('Auto-assign timeout skipped request %s: %s', req.pk, exc.detail)
                continue
            logger.warning('Request %s not accepted by user %s within the timeout', req.pk, previous_id)
            pool = [u for u in available_pool() if u.pk != previous_id]
            replacement = self._assign_one(req, pool, SweepResult(), now)
            event = {
                'requestId': req.pk,
                'oldAssignee': previous_id,
                'newAssignee': replacement.pk if replacement else None,
            }
            publish('auto_assign_timeout', event)
            expired.append(event)
        return expired

    def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        """Run one matching pass; a no-op when auto-assign is disabled."""
        if not config.auto_assign_enabled():
            return SweepResult()
        expired = self.expire_unaccepted(now)
        pool = available_pool()
        if not pool:
            return SweepResult(expired=expired)
        # requests released this tick wait for the next one
        queue = pending_queue().exclude(pk__in=[e['requestId'] for e in expired])
        result = self._assign_in_order(queue, pool)
        result.expired = expired
        if result.assigned:
            logger.info('Auto-assign paired %d request(s)', result.count)
        return result

    def match_one(self, request_id: int) -> Optional[User]:
        """Pair a single request with the next available transporter, if any."""
        req = pending_queue().filter(pk=request_id).first()
        if req is None:
            return None
        pool = available_pool()
        if not pool:
            return None
        result = self._assign_in_order([req], pool)
        if not result.assigned:
            return None
        return User.objects.get(pk=result.assigned[0][1])
