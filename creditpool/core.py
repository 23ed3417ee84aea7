"""
Core types for the credit pool.

This module provides the foundational data structures and protocols:
1. Protocols: AccessControl, CollateralCustody and Clock collaborators
2. Immutable data structures: PoolState, Position, StateChange, JournalEntry
3. Exceptions: PoolError and the domain-specific error taxonomy
4. Enums: RecourseMode, Resolution, Role, OverpaymentPolicy, PositionStage

Pool and Position snapshots are frozen. Every change produces a new instance
via dataclasses.replace(); only FinancingPool swaps snapshots in.
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields
from enum import Enum, IntEnum
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple, runtime_checkable


# ============================================================================
# CONSTANTS
# ============================================================================

SECONDS_PER_DAY = 24 * 3600
SECONDS_PER_YEAR = 365 * SECONDS_PER_DAY

# Default time gates for the default lifecycle.
GRACE_PERIOD = 7 * SECONDS_PER_DAY
RECOVERY_WINDOW = 30 * SECONDS_PER_DAY

# Reserved wallet for minting and burning in the settlement ledger.
# Exempt from balance validation.
SYSTEM_WALLET = "system"

# Wallets owned by the pool in the settlement ledger.
POOL_WALLET = "pool"
RESERVE_WALLET = "pool_reserve"


# ============================================================================
# ENUMS
# ============================================================================

class RecourseMode(IntEnum):
    """
    Who bears the loss when a position defaults.

    RECOURSE: the borrower remains liable and settles through pay_recourse.
    NON_RECOURSE: the pool bears the loss through the reserve, then LP NAV.
    """
    RECOURSE = 0
    NON_RECOURSE = 1


class Resolution(IntEnum):
    NONE = 0
    REPAID = 1
    WRITTEN_DOWN = 2
    RECOURSE_CLAIMED = 3


class Role(Enum):
    ADMIN = "ADMIN"
    OPERATOR = "OPERATOR"


class OverpaymentPolicy(Enum):
    """
    What a repayment larger than the outstanding debt does.

    CLAMP: only the outstanding debt is collected; the payer keeps the rest.
    REJECT: the payment is refused with OverpaymentRejected.
    """
    CLAMP = "clamp"
    REJECT = "reject"


class PositionStage(Enum):
    """Derived lifecycle stage of a position (see Position.stage)."""
    LOCKED = "LOCKED"
    DRAWN = "DRAWN"
    OVERDUE = "OVERDUE"
    GRACE = "GRACE"
    DEFAULT = "DEFAULT"
    RECOURSE_CLAIMED = "RECOURSE_CLAIMED"
    WRITTEN_DOWN = "WRITTEN_DOWN"
    RELEASED = "RELEASED"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class PoolError(Exception):
    """Base exception for all credit pool errors."""
    pass


class Paused(PoolError):
    """Raised when a liquidity or credit operation runs while the pool is paused."""
    pass


class InvalidParameter(PoolError, ValueError):
    """Raised when an argument is outside its permitted domain."""
    pass


class InvalidAmount(InvalidParameter):
    """Raised when a zero, negative or non-integral amount is supplied."""
    pass


class InsufficientLiquidity(PoolError):
    """Raised when a draw or withdrawal exceeds the pool's available cash."""
    pass


class InsufficientShares(PoolError):
    """Raised when a withdrawal burns more LP shares than the caller holds."""
    pass


class PoolInsolvent(PoolError):
    """Raised when shares are outstanding but NAV is zero, so no share price exists."""
    pass


class RiskLimitExceeded(PoolError):
    """Base for RiskGuard rejections."""
    pass


class UtilizationLimitExceeded(RiskLimitExceeded):
    pass


class MaxSingleLoanExceeded(RiskLimitExceeded):
    pass


class IssuerExposureLimitExceeded(RiskLimitExceeded):
    pass


class CreditLineExceeded(PoolError):
    """Raised when used credit would exceed the position's max credit line."""
    pass


class PositionNotFound(PoolError):
    pass


class PositionAlreadyExists(PoolError):
    pass


class Unauthorized(PoolError):
    """Raised when the caller lacks the role or ownership an operation requires."""
    pass


class GracePeriodNotElapsed(PoolError):
    pass


class GracePeriodNotStarted(GracePeriodNotElapsed):
    """Raised when default is declared on a position whose grace period never started."""
    pass


class GracePeriodAlreadyStarted(PoolError):
    pass


class NotOverdue(PoolError):
    """Raised when a position is marked overdue before its due date."""
    pass


class RecoveryWindowNotElapsed(PoolError):
    pass


class AlreadyInDefault(PoolError):
    pass


class NotInDefault(PoolError):
    pass


class RecourseModeMismatch(PoolError):
    """Raised when a resolution path does not match the position's recourse mode."""
    pass


class InvalidPositionState(PoolError):
    """Raised when an operation is not permitted in the position's current stage."""
    pass


class OverpaymentRejected(PoolError):
    pass


class CustodyTransferFailed(PoolError):
    """Raised when the custody collaborator refuses or fails a collateral transfer."""
    pass


class ArithmeticOverflow(PoolError, ArithmeticError):
    """Raised when a checked operation leaves the unsigned 256-bit range."""
    pass


class SettlementError(PoolError):
    """Base exception for settlement ledger errors."""
    pass


class InsufficientFunds(SettlementError):
    """Raised when a move would take a wallet balance below zero."""
    pass


class UnitNotRegistered(SettlementError):
    """Raised when operating on a unit the settlement ledger does not know."""
    pass


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class AccessControl(Protocol):
    """Role lookup for administrative and operator-gated operations."""

    def has_role(self, actor: str, role: Role) -> bool:
        ...


@runtime_checkable
class CollateralCustody(Protocol):
    """
    Custody of unique collateral references.

    Both methods return True when the transfer happened. Returning False or
    raising aborts the calling pool operation with no state change.
    """

    def transfer_in(self, collateral_ref: str, from_: str) -> bool:
        ...

    def transfer_out(self, collateral_ref: str, to: str) -> bool:
        ...


@runtime_checkable
class Clock(Protocol):
    """Monotonic source of epoch seconds."""

    def now(self) -> int:
        ...


# ============================================================================
# STATE SNAPSHOTS
# ============================================================================

def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


# snake_case attribute -> audit name where the camelCase rule does not apply
_AUDIT_NAMES = {
    "max_loan_bps_of_nav": "maxLoanBpsOfNAV",
}


def _audit_dict(obj: Any, names: Tuple[str, ...]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for name in names:
        value = getattr(obj, name)
        if isinstance(value, Enum):
            value = value.name
        out[_AUDIT_NAMES.get(name, _camel(name))] = value
    return out


@dataclass(frozen=True, slots=True)
class PoolState:
    """
    Immutable snapshot of the pool's books.

    total_liquidity_asset is the cash book. Written-down principal is moved into
    it and offset by total_losses for the part the reserve did not cover, so the
    pool wallet physically holds total_liquidity_asset - total_losses.
    """
    total_liquidity_asset: int = 0
    total_principal_outstanding: int = 0
    total_interest_accrued: int = 0
    total_losses: int = 0
    protocol_fees_accrued: int = 0
    reserve_balance: int = 0
    reserve_target_bps: int = 0
    lp_share_supply: int = 0
    max_utilization_bps: int = 8000
    max_loan_bps_of_nav: int = 10_000
    max_issuer_exposure_bps: int = 10_000
    borrow_apr_wad: int = 150_000_000_000_000_000
    protocol_fee_bps: int = 1000
    paused: bool = False

    def to_state_dict(self) -> Dict[str, Any]:
        """Return every field under its audit name (totalLiquidityAsset, ...)."""
        return _audit_dict(self, tuple(f.name for f in fields(self)))


# Position fields exported for auditing, in declaration order.
POSITION_AUDIT_FIELDS = (
    "exists", "owner", "collateral_ref", "face_value", "ltv_bps",
    "max_credit_line", "used_credit", "interest_accrued",
    "last_accrual_timestamp", "recourse_mode", "due_date", "grace_ends_at",
    "is_in_default", "default_declared_at", "resolution", "liquidated",
)


@dataclass(frozen=True, slots=True)
class Position:
    """
    Immutable snapshot of one collateral-backed credit position.

    Keyed by collateral_ref. Each state change creates a NEW instance
    (value semantics); the engine keeps the latest one per live reference and
    archives the final one on release or full write-down.
    """
    owner: str
    collateral_ref: str
    face_value: int
    ltv_bps: int
    max_credit_line: int
    recourse_mode: RecourseMode
    due_date: int
    last_accrual_timestamp: int
    used_credit: int = 0
    interest_accrued: int = 0
    grace_ends_at: int = 0
    is_in_default: bool = False
    default_declared_at: int = 0
    resolution: Resolution = Resolution.NONE
    liquidated: bool = False
    exists: bool = True
    # Lifetime totals
    created_at: int = 0
    total_interest_paid: int = 0
    total_principal_paid: int = 0
    total_written_down: int = 0
    released: bool = False
    # Sub-unit interest carried between accruals, scaled by SECONDS_PER_YEAR * WAD
    accrual_remainder: int = 0

    @property
    def total_debt(self) -> int:
        return self.used_credit + self.interest_accrued

    @property
    def available_credit(self) -> int:
        return max(self.max_credit_line - self.used_credit, 0)

    def stage(self, now: int) -> PositionStage:
        """
        Derive the lifecycle stage at time `now`.

        LOCKED -> DRAWN -> OVERDUE -> GRACE -> DEFAULT -> RECOURSE_CLAIMED |
        WRITTEN_DOWN -> RELEASED
        """
        if self.released:
            return PositionStage.RELEASED
        if self.resolution == Resolution.RECOURSE_CLAIMED:
            return PositionStage.RECOURSE_CLAIMED
        if self.resolution == Resolution.WRITTEN_DOWN:
            return PositionStage.WRITTEN_DOWN
        if self.is_in_default:
            return PositionStage.DEFAULT
        if self.grace_ends_at:
            return PositionStage.GRACE
        if self.total_debt == 0:
            return PositionStage.LOCKED
        if now >= self.due_date:
            return PositionStage.OVERDUE
        return PositionStage.DRAWN

    def to_state_dict(self) -> Dict[str, Any]:
        return _audit_dict(self, POSITION_AUDIT_FIELDS)


# Read-only position views are the frozen snapshots themselves.
PositionView = Position


# ============================================================================
# OPERATION RESULTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Repayment:
    """
    Allocation of one repay_credit / pay_recourse payment.

    amount_paid is what was collected from the payer; with the CLAMP policy it
    may be lower than amount_offered.
    """
    collateral_ref: str
    amount_offered: int
    amount_paid: int
    interest_paid: int
    principal_paid: int
    protocol_fee: int
    remaining_debt: int

    @property
    def lp_interest(self) -> int:
        return self.interest_paid - self.protocol_fee

    @property
    def cleared(self) -> bool:
        return self.remaining_debt == 0


@dataclass(frozen=True, slots=True)
class WriteDown:
    """Breakdown of a write_down_loss through the reserve-then-LP waterfall."""
    collateral_ref: str
    loss_amount: int
    reserve_absorbed: int
    lp_loss: int
    interest_reversed: int
    remaining_principal: int
    liquidated: bool


# ============================================================================
# JOURNAL
# ============================================================================

@dataclass(frozen=True, slots=True)
class StateChange:
    """
    Before/after snapshot of one Pool or Position record.

    old_state is None when the record was created by the operation. An
    archived position's new_state is its final record (exists=False).
    """
    key: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """
        Compute fields that differ between old and new state.

        Returns:
            Dict mapping field name to (old_value, new_value) tuples.
        """
        old = self.old_state.to_state_dict() if self.old_state is not None else {}
        new = self.new_state.to_state_dict() if self.new_state is not None else {}
        changes = {}
        for key in old.keys() | new.keys():
            if old.get(key) != new.get(key):
                changes[key] = (old.get(key), new.get(key))
        return changes


@dataclass(frozen=True, slots=True)
class JournalEntry:
    """
    An executed, immutable record of one committed pool operation.

    Attributes:
        sequence: Monotonic sequence within the pool
        operation: Operation name (e.g. "deposit", "write_down_loss")
        actor: Caller that performed the operation
        timestamp: Clock time of the commit
        state_changes: Pool and Position snapshots before and after
        transfer_ids: Settlement transaction ids executed with the operation
        details: Operation-specific figures (shares minted, reserve absorbed, ...)
    """
    sequence: int
    operation: str
    actor: str
    timestamp: int
    state_changes: Tuple[StateChange, ...]
    transfer_ids: Tuple[str, ...] = ()
    details: Mapping[str, Any] = field(default_factory=dict)

    def __repr__(self) -> str:
        return (
            f"JournalEntry(#{self.sequence} {self.operation} by {self.actor} "
            f"at {self.timestamp}, {len(self.state_changes)} changes)"
        )
