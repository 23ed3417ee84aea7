"""
collaborators.py - In-Memory Collaborators

Reference implementations of the protocols FinancingPool consumes:

    RoleRegistry      AccessControl
    InMemoryCustody   CollateralCustody
    ManualClock       Clock (test and simulation time, forward only)
    SystemClock       Clock (wall time)

They are enough to embed the pool in a single process and to test it; a
deployment swaps in its own identity, custody and time sources.
"""

from __future__ import annotations
import logging
import threading
import time
from collections import defaultdict
from typing import Dict, Iterable, Optional, Set

from .core import Role

logger = logging.getLogger(__name__)


class RoleRegistry:
    """
    AccessControl backed by a role -> members mapping.

    Example:
        roles = RoleRegistry(admins=["treasury"], operators=["agent"])
        roles.has_role("agent", Role.OPERATOR)  # True
    """

    def __init__(self, admins: Iterable[str] = (), operators: Iterable[str] = ()):
        self._members: Dict[Role, Set[str]] = defaultdict(set)
        self._lock = threading.Lock()
        for actor in admins:
            self.grant_role(Role.ADMIN, actor)
        for actor in operators:
            self.grant_role(Role.OPERATOR, actor)

    def has_role(self, actor: str, role: Role) -> bool:
        with self._lock:
            return actor in self._members[Role(role)]

    def grant_role(self, role: Role, actor: str) -> None:
        with self._lock:
            self._members[Role(role)].add(actor)
        logger.info("Granted %s to %s", Role(role).value, actor)

    def revoke_role(self, role: Role, actor: str) -> None:
        with self._lock:
            self._members[Role(role)].discard(actor)
        logger.info("Revoked %s from %s", Role(role).value, actor)

    def members(self, role: Role) -> Set[str]:
        with self._lock:
            return set(self._members[Role(role)])


class InMemoryCustody:
    """
    CollateralCustody holding a holder per collateral reference.

    transfer_in requires the sender to hold the reference; transfer_out
    requires the custodian to hold it. Refusals return False.
    """

    def __init__(self, custodian: str = "pool"):
        self.custodian = custodian
        self._holders: Dict[str, str] = {}
        self._lock = threading.Lock()

    def mint(self, collateral_ref: str, holder: str) -> None:
        """Register a new collateral reference held by `holder`."""
        with self._lock:
            if collateral_ref in self._holders:
                raise ValueError(f"Collateral {collateral_ref} already exists")
            self._holders[collateral_ref] = holder

    def holder_of(self, collateral_ref: str) -> Optional[str]:
        with self._lock:
            return self._holders.get(collateral_ref)

    def transfer_in(self, collateral_ref: str, from_: str) -> bool:
        with self._lock:
            if self._holders.get(collateral_ref) != from_:
                logger.warning("Custody refused transfer_in of %s from %s", collateral_ref, from_)
                return False
            self._holders[collateral_ref] = self.custodian
            return True

    def transfer_out(self, collateral_ref: str, to: str) -> bool:
        with self._lock:
            if self._holders.get(collateral_ref) != self.custodian:
                logger.warning("Custody refused transfer_out of %s to %s", collateral_ref, to)
                return False
            self._holders[collateral_ref] = to
            return True


class ManualClock:
    """
    Clock whose time only moves when told to.

    Time can only move forward, never backward.
    """

    def __init__(self, start: int = 0):
        self._now = int(start)
        self._lock = threading.Lock()

    def now(self) -> int:
        with self._lock:
            return self._now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError(f"Cannot move time backwards by {seconds}s")
        with self._lock:
            self._now += int(seconds)
            return self._now

    def set(self, timestamp: int) -> None:
        """
        Raises:
            ValueError: If timestamp is before the current time
        """
        with self._lock:
            if timestamp < self._now:
                raise ValueError(f"Cannot move time backwards: {timestamp} < {self._now}")
            self._now = int(timestamp)


class SystemClock:
    """Wall-clock time in whole epoch seconds."""

    def now(self) -> int:
        return int(time.time())
