from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional

from google.api_core import exceptions as google_exceptions

from .errors import EmptyAudienceError, InfrastructureTransientError, Result, ValidationError

USERS_COLLECTION = "users"
ENDPOINT_FIELD = "fcmToken"

logger = logging.getLogger("notifications.audience")


class AudienceSelector(str, Enum):
    ALL_USERS = "all_users"
    ACTIVE_USERS = "active_users"
    BETA_USERS = "beta_users"
    BETA_SUBSCRIBERS = "beta_subscribers"


def parse_audience(value: Any) -> Result[AudienceSelector]:
    if isinstance(value, AudienceSelector):
        return Result.ok(value)
    try:
        return Result.ok(AudienceSelector(str(value or "").strip()))
    except ValueError:
        return Result.fail(
            ValidationError(
                f"Unknown target audience: {value or '<empty>'}",
                allowed=[item.value for item in AudienceSelector],
            )
        )


@dataclass(frozen=True)
class Recipient:
    user_id: str
    endpoint: str


@dataclass
class ResolvedAudience:
    selector: AudienceSelector
    recipients: List[Recipient] = field(default_factory=list)
    matched_users: int = 0
    missing_endpoint: int = 0


class AudienceResolver:
    def __init__(self, db, *, count_total_users: bool = True) -> None:
        self._db = db
        self._count_total_users = count_total_users

    def _query(self, selector: AudienceSelector):
        users = self._db.collection(USERS_COLLECTION)
        if selector is AudienceSelector.ACTIVE_USERS:
            return users.where("isActive", "==", True)
        if selector is AudienceSelector.BETA_USERS:
            return users.where("isBetaUser", "==", True)
        if selector is AudienceSelector.BETA_SUBSCRIBERS:
            return users.where("isBetaUser", "==", True).where(
                "subscribedToUpdates", "==", True
            )
        return users

    def _total_users(self) -> Optional[int]:
        if not self._count_total_users:
            return None
        try:
            aggregate = self._db.collection(USERS_COLLECTION).count().get()
            return int(aggregate[0][0].value)
        except google_exceptions.GoogleAPICallError as exc:
            logger.warning("Could not count users for diagnostics: %s", exc)
            return None

    def resolve(self, selector: AudienceSelector) -> Result[ResolvedAudience]:
        try:
            snapshots = list(self._query(selector).stream())
        except google_exceptions.FailedPrecondition as exc:
            return Result.fail(
                InfrastructureTransientError(
                    f"Audience query for {selector.value} is not ready: {exc}"
                )
            )

        resolved = ResolvedAudience(selector=selector, matched_users=len(snapshots))
        for snapshot in snapshots:
            data = snapshot.to_dict() or {}
            endpoint = str(data.get(ENDPOINT_FIELD) or "").strip()
            if not endpoint:
                resolved.missing_endpoint += 1
                continue
            resolved.recipients.append(Recipient(user_id=snapshot.id, endpoint=endpoint))

        if not snapshots:
            total = self._total_users()
            logger.info(
                "No users in audience %s (total users: %s)",
                selector.value,
                total if total is not None else "unknown",
            )
            return Result.fail(
                EmptyAudienceError(
                    "no users in selected audience",
                    reason=EmptyAudienceError.NO_USERS,
                    audience=selector.value,
                    total_users=total,
                )
            )
        if not resolved.recipients:
            return Result.fail(
                EmptyAudienceError(
                    "no deliverable endpoints in selected audience",
                    reason=EmptyAudienceError.NO_DELIVERABLE_ENDPOINTS,
                    audience=selector.value,
                    matched_users=resolved.matched_users,
                )
            )

        logger.info(
            "Resolved audience %s: %s users, %s with endpoints, %s without",
            selector.value,
            resolved.matched_users,
            len(resolved.recipients),
            resolved.missing_endpoint,
        )
        return Result.ok(resolved)
