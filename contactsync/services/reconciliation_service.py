"""Reconciliation: manifest diffing and the requester-side exchange.

The requester asks for the source's uID -> timestamp manifest, compares it
with the manifest it cached after the previous exchange, and fetches only
the contacts that are new or changed. The cache belongs to the caller; the
session only writes to it once a fetch response has been accepted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from contactsync.exceptions import MalformedRecordError, ReconciliationStateError
from contactsync.protocol.packets import (
    build_request_all_uids_timestamps,
    build_request_vcards_by_uid,
    parse_response_uids_timestamps,
    parse_response_vcards,
)
from contactsync.services.vcard_service import DEFAULT_NAMESPACE, parse_finalized

if TYPE_CHECKING:
    from collections.abc import Mapping

    from contactsync.protocol.packets import NetworkPacket
    from contactsync.services.identity_service import UID

logger = logging.getLogger(__name__)


class SessionState(StrEnum):
    """Requester-side exchange states."""

    IDLE = "idle"
    MANIFEST_REQUESTED = "manifest_requested"
    MANIFEST_RECEIVED = "manifest_received"
    FETCH_REQUESTED = "fetch_requested"
    COMPLETE = "complete"


@dataclass
class FetchPlan:
    """The computed fetch plan."""

    to_fetch: list[UID] = field(default_factory=list)
    unchanged: list[UID] = field(default_factory=list)
    deleted: list[UID] = field(default_factory=list)


def compute_fetch_plan(local: Mapping[UID, int], remote: Mapping[UID, int]) -> FetchPlan:
    """Compare the cached manifest with the remote one.

    A uID is fetched when it is absent locally or the remote timestamp is
    newer. uIDs the remote no longer reports are listed as deleted; acting on
    them is up to the caller.
    """
    plan = FetchPlan()

    for uid in sorted(set(local) | set(remote)):
        in_local = uid in local
        in_remote = uid in remote

        if in_remote and not in_local:
            plan.to_fetch.append(uid)
        elif in_remote and in_local:
            if remote[uid] > local[uid]:
                plan.to_fetch.append(uid)
            else:
                plan.unchanged.append(uid)
        else:
            plan.deleted.append(uid)

    return plan


@dataclass
class ContactCache:
    """Requester-side copy of the remote contact book."""

    timestamps: dict[UID, int] = field(default_factory=dict)
    vcards: dict[UID, str] = field(default_factory=dict)


@dataclass
class FetchResult:
    """Outcome of applying a ``response_vcards`` packet."""

    updated: list[UID] = field(default_factory=list)
    unavailable: list[UID] = field(default_factory=list)
    malformed: list[UID] = field(default_factory=list)
    unexpected: list[UID] = field(default_factory=list)


class ReconciliationSession:
    """One requester-side exchange against a single source device.

    Drive it as ``request_manifest`` -> ``receive_manifest`` ->
    ``request_fetch`` -> ``receive_vcards``. A session is single use.
    """

    def __init__(self, cache: ContactCache, namespace: str = DEFAULT_NAMESPACE) -> None:
        self.cache = cache
        self.namespace = namespace
        self.state = SessionState.IDLE
        self.remote_manifest: dict[UID, int] = {}
        self.plan: FetchPlan | None = None
        self._requested: list[UID] = []

    def _require(self, expected: SessionState, action: str) -> None:
        if self.state != expected:
            raise ReconciliationStateError(
                f"Cannot {action} in state {self.state}; expected {expected}"
            )

    def request_manifest(self) -> NetworkPacket:
        """Emit the manifest request."""
        self._require(SessionState.IDLE, "request the manifest")
        self.state = SessionState.MANIFEST_REQUESTED
        return build_request_all_uids_timestamps()

    def receive_manifest(self, packet: NetworkPacket) -> FetchPlan:
        """Diff the remote manifest against the cache and remember the plan."""
        self._require(SessionState.MANIFEST_REQUESTED, "receive a manifest")
        self.remote_manifest = parse_response_uids_timestamps(packet)
        self.plan = compute_fetch_plan(self.cache.timestamps, self.remote_manifest)
        self.state = SessionState.MANIFEST_RECEIVED
        logger.info(
            "Manifest: %d remote, %d to fetch, %d unchanged, %d deleted",
            len(self.remote_manifest),
            len(self.plan.to_fetch),
            len(self.plan.unchanged),
            len(self.plan.deleted),
        )
        return self.plan

    def request_fetch(self) -> NetworkPacket | None:
        """Emit the fetch request, or complete at once when nothing changed."""
        self._require(SessionState.MANIFEST_RECEIVED, "request vCards")
        assert self.plan is not None
        if not self.plan.to_fetch:
            self.state = SessionState.COMPLETE
            return None
        self._requested = list(self.plan.to_fetch)
        self.state = SessionState.FETCH_REQUESTED
        return build_request_vcards_by_uid(self._requested)

    def receive_vcards(self, packet: NetworkPacket) -> FetchResult:
        """Validate the fetched vCards and write them into the cache.

        The timestamp cached for each uID is the one embedded in its vCard.
        Requested uIDs missing from the response are reported as unavailable
        and are not re-requested.
        """
        self._require(SessionState.FETCH_REQUESTED, "receive vCards")
        vcards = parse_response_vcards(packet)
        requested = set(self._requested)
        result = FetchResult()

        staged: dict[UID, tuple[str, int]] = {}
        for uid, text in vcards.items():
            if uid not in requested:
                logger.warning("Ignoring unrequested uID %s in response", uid)
                result.unexpected.append(uid)
                continue
            try:
                finalized = parse_finalized(text, self.namespace)
            except MalformedRecordError as exc:
                logger.warning("Dropping malformed vCard for %s: %s", uid, exc)
                result.malformed.append(uid)
                continue
            if finalized.metadata.uid != uid:
                logger.warning(
                    "Dropping vCard for %s carrying uID %s", uid, finalized.metadata.uid
                )
                result.malformed.append(uid)
                continue
            staged[uid] = (text, finalized.metadata.timestamp)

        for uid, (text, timestamp) in staged.items():
            self.cache.vcards[uid] = text
            self.cache.timestamps[uid] = timestamp
            result.updated.append(uid)

        result.unavailable = [uid for uid in self._requested if uid not in vcards]
        self.state = SessionState.COMPLETE
        return result
