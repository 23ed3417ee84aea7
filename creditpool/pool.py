"""
pool.py - The Financing Pool Engine

FinancingPool is the central state manager of the credit pool. It is the only
object that mutates pool state, and it does so through a fixed sequence for
every operation:

    1. Check roles and ownership (AccessControl)
    2. Stage: run the pure transitions (liquidity, positions, interest, risk
       guard, reserve, defaults) on the current frozen snapshots
    3. Validate the settlement moves the operation needs
    4. Call custody for collateral moves (a refusal aborts the operation)
    5. Commit: execute the moves, swap in the new snapshot, append a journal entry

Any failure in steps 1-4 raises before anything is committed, so every
operation is all-or-nothing.

Thread Safety:
    Mutating operations are serialized by a single writer lock. Pool and
    position state live in one immutable snapshot that a commit replaces in a
    single assignment; read-only queries use whatever snapshot is current
    and never observe a partial update.

Example:
    roles = RoleRegistry(admins=["treasury"], operators=["agent"])
    custody = InMemoryCustody()
    clock = ManualClock(start=1_700_000_000)
    pool = FinancingPool(roles, custody, clock)

    pool.settlement.issue("lp1", "USDC", 10_000)
    pool.deposit("lp1", 10_000)

    custody.mint("INV-001", "acme")
    pool.lock_collateral("acme", "INV-001", "acme", face_value=5_000,
                         due_date=clock.now() + 30 * 86400)
    pool.draw_credit("acme", "INV-001", 3_000)
"""

from __future__ import annotations
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from . import defaults, interest, liquidity, positions, reserve, risk_guard
from .config import PoolConfig
from .core import (
    POOL_WALLET, RESERVE_WALLET, SYSTEM_WALLET,
    AccessControl, Clock, CollateralCustody,
    JournalEntry, PoolState, Position, PositionStage, RecourseMode, Repayment, Role,
    StateChange, WriteDown,
    CustodyTransferFailed, InvalidAmount, InvalidParameter, InsufficientShares, Paused, PoolError,
    PositionAlreadyExists, PositionNotFound, SettlementError, Unauthorized,
)
from .fixed_point import AmountLike, BPS_DENOMINATOR, as_amount
from .settlement import ExecuteResult, Move, PendingTransfer, SettlementLedger

logger = logging.getLogger(__name__)

# Settlement wallets the pool manages itself; never valid as an outside party.
_INTERNAL_WALLETS = frozenset({SYSTEM_WALLET, POOL_WALLET, RESERVE_WALLET})


@dataclass(frozen=True, slots=True)
class _Snapshot:
    pool: PoolState
    positions: Mapping[str, Position]


@dataclass(frozen=True, slots=True)
class _CustodyCall:
    method: str  # "transfer_in" | "transfer_out"
    collateral_ref: str
    counterparty: str


class FinancingPool:
    """
    Pooled-liquidity invoice financing engine.

    Every public mutator takes the acting identity as its first argument
    (`caller`). Amounts are integers in base units of the pool asset; integral
    Decimals and numeric strings are accepted as well. Timestamps are epoch
    seconds from the injected Clock.
    """

    def __init__(
        self,
        access: AccessControl,
        custody: CollateralCustody,
        clock: Clock,
        config: Optional[PoolConfig] = None,
        settlement: Optional[SettlementLedger] = None,
        name: str = "creditpool",
        verbose: bool = False,
    ):
        """
        Create a pool.

        Args:
            access: Role lookup for ADMIN / OPERATOR gated operations
            custody: Custodian of collateral references
            clock: Source of the current time
            config: Pool terms (default: PoolConfig())
            settlement: Wallet ledger holding asset and LP share balances
                        (default: a fresh SettlementLedger)
            name: Pool identifier used in logs and transfer ids
            verbose: Log committed operations at INFO instead of DEBUG
        """
        self.name = name
        self.config = config or PoolConfig()
        self.access = access
        self.custody = custody
        self.clock = clock
        self.verbose = verbose
        self.settlement = settlement or SettlementLedger(name)
        self.asset = self.config.asset_symbol
        self.share = self.config.share_symbol

        for symbol, unit_name in ((self.asset, "Pool asset"), (self.share, f"{name} LP share")):
            if symbol not in self.settlement.units:
                self.settlement.register_unit(symbol, unit_name)
        self.settlement.ensure_wallet(POOL_WALLET)
        self.settlement.ensure_wallet(RESERVE_WALLET)

        self._lock = threading.Lock()
        self._snapshot = _Snapshot(
            pool=self.config.initial_pool_state(),
            positions=MappingProxyType({}),
        )
        self._archive: List[Position] = []
        self._journal: List[JournalEntry] = []
        self._next_sequence = 0

    # ========================================================================
    # READ-ONLY QUERIES
    # ========================================================================

    def pool_state(self) -> PoolState:
        return self._snapshot.pool

    def get_position(self, collateral_ref: str) -> Position:
        """
        Return the live position for a collateral reference.

        Raises:
            PositionNotFound: If no live position exists (never locked,
                              released or fully written down)
        """
        position = self._snapshot.positions.get(collateral_ref)
        if position is None:
            raise PositionNotFound(f"No position for collateral {collateral_ref}")
        return position

    def has_position(self, collateral_ref: str) -> bool:
        return collateral_ref in self._snapshot.positions

    def list_positions(self, owner: Optional[str] = None) -> Tuple[Position, ...]:
        live = self._snapshot.positions.values()
        return tuple(p for p in live if owner is None or p.owner == owner)

    def archived_positions(self, collateral_ref: Optional[str] = None) -> Tuple[Position, ...]:
        with self._lock:
            archive = tuple(self._archive)
        return tuple(p for p in archive if collateral_ref is None or p.collateral_ref == collateral_ref)

    def overdue_positions(self) -> Tuple[Position, ...]:
        """Live positions past their due date with no grace period started."""
        now = self.clock.now()
        return tuple(
            p for p in self._snapshot.positions.values()
            if p.stage(now) == PositionStage.OVERDUE
        )

    def outstanding_debt(self, collateral_ref: str) -> int:
        """Principal plus booked and pending interest at the current time."""
        position = self.get_position(collateral_ref)
        pool = self._snapshot.pool
        return interest.calculate_total_debt(position, pool.borrow_apr_wad, self.clock.now())

    def get_nav(self) -> int:
        return liquidity.calculate_nav(self._snapshot.pool)

    def share_price_wad(self) -> int:
        return liquidity.calculate_share_price(self._snapshot.pool)

    def utilization_bps(self) -> int:
        return liquidity.calculate_utilization_bps(self._snapshot.pool)

    def available_liquidity(self) -> int:
        return liquidity.calculate_available_liquidity(self._snapshot.pool)

    def issuer_exposure(self, owner: str) -> int:
        return positions.calculate_issuer_exposure(self._snapshot.positions.values(), owner)

    def lp_shares(self, lp: str) -> int:
        with self._lock:
            return self.settlement.get_balance(lp, self.share)

    def risk_snapshot(self) -> risk_guard.RiskSnapshot:
        return risk_guard.risk_snapshot(self._snapshot.pool)

    def reserve_status(self) -> reserve.ReserveStatus:
        return reserve.reserve_status(self._snapshot.pool)

    @property
    def journal(self) -> Tuple[JournalEntry, ...]:
        with self._lock:
            return tuple(self._journal)

    def reconcile(self) -> Dict[str, Any]:
        """
        Cross-check the pool's books against the settlement ledger.

        Returns:
            Dict with keys:
            - 'valid': bool - True if every check matches
            - 'discrepancies': List[Dict] - check, expected, actual
        """
        with self._lock:
            snap = self._snapshot
            pool = snap.pool
            live = list(snap.positions.values())
            checks = [
                ("pool_cash", liquidity.calculate_cash_on_hand(pool),
                 self.settlement.get_balance(POOL_WALLET, self.asset)),
                ("reserve_cash", pool.reserve_balance,
                 self.settlement.get_balance(RESERVE_WALLET, self.asset)),
                ("lp_share_supply", pool.lp_share_supply,
                 self.settlement.circulating_supply(self.share)),
                ("principal_outstanding", pool.total_principal_outstanding,
                 sum(p.used_credit for p in live)),
                ("interest_accrued", pool.total_interest_accrued,
                 sum(p.interest_accrued for p in live)),
            ]
            settlement_check = self.settlement.verify_double_entry()

        discrepancies = [
            {'check': check, 'expected': expected, 'actual': actual}
            for check, expected, actual in checks
            if expected != actual
        ]
        for item in settlement_check['discrepancies']:
            discrepancies.append({
                'check': f"supply:{item['unit']}",
                'expected': item['expected'],
                'actual': item['actual'],
            })
        if discrepancies:
            logger.warning("Reconciliation of %s found %d discrepancies", self.name, len(discrepancies))
        return {'valid': not discrepancies, 'discrepancies': discrepancies}

    # ========================================================================
    # LIQUIDITY (LP)
    # ========================================================================

    def deposit(self, caller: str, amount: AmountLike) -> int:
        """
        Deposit pool asset and mint LP shares at the current share price.

        Returns:
            Shares minted

        Raises:
            Paused, InvalidAmount, PoolInsolvent, InsufficientFunds
        """
        with self._writer("deposit", caller):
            amount = as_amount(amount)
            snap = self._snapshot
            self._require_not_paused(snap.pool)
            result = liquidity.deposit(snap.pool, amount)
            self._commit(
                "deposit", caller, snap, result.pool,
                moves=[
                    Move(amount, self.asset, caller, POOL_WALLET, "deposit"),
                    Move(result.shares_minted, self.share, SYSTEM_WALLET, caller, "deposit"),
                ],
                details={
                    'amount': amount,
                    'shares_minted': result.shares_minted,
                    'share_price_wad': result.share_price_wad,
                },
            )
            return result.shares_minted

    def withdraw(self, caller: str, shares: AmountLike) -> int:
        """
        Burn LP shares for pool asset at the current share price.

        Blocked while utilization is at or above the cap.

        Returns:
            Asset amount paid out

        Raises:
            Paused, InvalidAmount, InsufficientShares, UtilizationLimitExceeded,
            InsufficientLiquidity
        """
        with self._writer("withdraw", caller):
            shares = as_amount(shares, "shares")
            snap = self._snapshot
            self._require_not_paused(snap.pool)
            if shares <= 0:
                raise InvalidAmount(f"Withdrawal shares must be positive, got {shares}")
            held = self.settlement.get_balance(caller, self.share)
            if shares > held:
                raise InsufficientShares(f"{caller} holds {held} shares, cannot burn {shares}")
            result = liquidity.withdraw(snap.pool, shares)
            self._commit(
                "withdraw", caller, snap, result.pool,
                moves=[
                    Move(shares, self.share, caller, SYSTEM_WALLET, "withdraw"),
                    Move(result.amount_out, self.asset, POOL_WALLET, caller, "withdraw"),
                ],
                details={
                    'shares_burned': shares,
                    'amount_out': result.amount_out,
                    'share_price_wad': result.share_price_wad,
                },
            )
            return result.amount_out

    # ========================================================================
    # CREDIT LIFECYCLE (BORROWER)
    # ========================================================================

    def lock_collateral(
        self,
        caller: str,
        collateral_ref: str,
        owner: str,
        face_value: AmountLike,
        due_date: int,
    ) -> Position:
        """
        Take custody of collateral and open a NON_RECOURSE position on it.

        Callable by the owner or an OPERATOR acting on the owner's behalf.

        Raises:
            Unauthorized, PositionAlreadyExists, InvalidAmount, InvalidParameter,
            CustodyTransferFailed
        """
        with self._writer("lock_collateral", caller):
            self._require_external(owner)
            if caller != owner and not self.access.has_role(caller, Role.OPERATOR):
                raise Unauthorized(f"{caller} cannot lock collateral for {owner}")
            face_value = as_amount(face_value, "face_value")
            snap = self._snapshot
            if collateral_ref in snap.positions:
                raise PositionAlreadyExists(f"Collateral {collateral_ref} is already locked")
            now = self.clock.now()
            position = positions.open_position(
                collateral_ref, owner, face_value, int(due_date), now, self.config
            )
            self._commit(
                "lock_collateral", caller, snap, snap.pool,
                updates={collateral_ref: position},
                custody_call=_CustodyCall("transfer_in", collateral_ref, owner),
                details={
                    'face_value': face_value,
                    'max_credit_line': position.max_credit_line,
                    'due_date': position.due_date,
                },
            )
            return position

    def set_position_recourse_mode(self, caller: str, collateral_ref: str, mode: RecourseMode) -> Position:
        """
        Switch a position between RECOURSE and NON_RECOURSE before default.

        Raises:
            PositionNotFound, Unauthorized, AlreadyInDefault, InvalidPositionState,
            CreditLineExceeded
        """
        with self._writer("set_position_recourse_mode", caller):
            snap = self._snapshot
            position = self._live_position(snap, collateral_ref)
            if caller != position.owner and not self.access.has_role(caller, Role.ADMIN):
                raise Unauthorized(f"{caller} cannot change recourse mode of {collateral_ref}")
            updated = positions.change_recourse_mode(position, mode, self.config)
            self._commit(
                "set_position_recourse_mode", caller, snap, snap.pool,
                updates={collateral_ref: updated},
                details={'mode': updated.recourse_mode.name, 'ltv_bps': updated.ltv_bps},
            )
            return updated

    def draw_credit(
        self,
        caller: str,
        collateral_ref: str,
        amount: AmountLike,
        recipient: Optional[str] = None,
    ) -> Position:
        """
        Draw credit against a position and pay it to `recipient` (default: caller).

        Order of checks: position exists, caller is owner, amount, paused,
        default state, interest accrual, RiskGuard, credit line, liquidity.

        Raises:
            PositionNotFound, Unauthorized, InvalidAmount, Paused, AlreadyInDefault,
            UtilizationLimitExceeded, MaxSingleLoanExceeded,
            IssuerExposureLimitExceeded, CreditLineExceeded, InsufficientLiquidity
        """
        with self._writer("draw_credit", caller):
            snap = self._snapshot
            position = self._live_position(snap, collateral_ref)
            self._require_owner(caller, position)
            amount = as_amount(amount)
            if amount <= 0:
                raise InvalidAmount(f"Draw amount must be positive, got {amount}")
            self._require_not_paused(snap.pool)
            positions.check_drawable(position)

            position, pool, accrued = interest.accrue(position, snap.pool, self.clock.now())
            exposure = positions.calculate_issuer_exposure(snap.positions.values(), position.owner)
            risk_guard.evaluate_draw(pool, exposure, amount)
            position, pool = positions.draw(position, pool, amount)

            recipient = recipient or caller
            self._require_external(recipient)
            self._commit(
                "draw_credit", caller, snap, pool,
                updates={collateral_ref: position},
                moves=[Move(amount, self.asset, POOL_WALLET, recipient, "draw_credit")],
                details={'amount': amount, 'recipient': recipient, 'interest_accrued': accrued},
            )
            return position

    def repay_credit(self, caller: str, collateral_ref: str, amount: AmountLike) -> Repayment:
        """
        Repay interest first, then principal.

        Overpayment follows config.overpayment_policy: CLAMP collects only the
        outstanding debt, REJECT raises OverpaymentRejected.

        Raises:
            PositionNotFound, Unauthorized, InvalidAmount, AlreadyInDefault,
            OverpaymentRejected, InsufficientFunds
        """
        with self._writer("repay_credit", caller):
            snap = self._snapshot
            position = self._live_position(snap, collateral_ref)
            self._require_owner(caller, position)
            amount = as_amount(amount)
            position, pool, accrued = interest.accrue(position, snap.pool, self.clock.now())
            position, pool, allocation = positions.repay(
                position, pool, amount, self.config.overpayment_policy
            )
            self._commit(
                "repay_credit", caller, snap, pool,
                updates={collateral_ref: position},
                moves=[Move(allocation.amount_paid, self.asset, caller, POOL_WALLET, "repay_credit")],
                details=self._repayment_details(allocation, accrued),
            )
            return allocation

    def accrue_interest(self, caller: str, collateral_ref: str) -> int:
        """
        Book interest on a position up to now. Callable by anyone, idempotent,
        and permitted while paused.

        Returns:
            Interest booked by this call
        """
        with self._writer("accrue_interest", caller):
            snap = self._snapshot
            position = self._live_position(snap, collateral_ref)
            updated, pool, delta = interest.accrue(position, snap.pool, self.clock.now())
            if updated != position:
                self._commit(
                    "accrue_interest", caller, snap, pool,
                    updates={collateral_ref: updated},
                    details={'interest_accrued': delta},
                )
            return delta

    def release_collateral(self, caller: str, collateral_ref: str) -> Position:
        """
        Return collateral to its owner once the position owes nothing.

        Returns:
            The archived position record

        Raises:
            Unauthorized, PositionNotFound, AlreadyInDefault, InvalidPositionState,
            CustodyTransferFailed
        """
        with self._writer("release_collateral", caller):
            self._require_role(caller, Role.OPERATOR)
            snap = self._snapshot
            position = self._live_position(snap, collateral_ref)
            position, pool, _ = interest.accrue(position, snap.pool, self.clock.now())
            positions.check_releasable(position)
            final = replace(position, exists=False, released=True)
            self._commit(
                "release_collateral", caller, snap, pool,
                archived={collateral_ref: final},
                custody_call=_CustodyCall("transfer_out", collateral_ref, position.owner),
                details={'returned_to': position.owner, 'resolution': final.resolution.name},
            )
            return final

    # ========================================================================
    # DEFAULT RESOLUTION
    # ========================================================================

    def mark_overdue_and_start_grace(self, caller: str, collateral_ref: str) -> Position:
        """
        Raises:
            Unauthorized, PositionNotFound, NotOverdue, GracePeriodAlreadyStarted,
            AlreadyInDefault, InvalidPositionState
        """
        with self._writer("mark_overdue_and_start_grace", caller):
            self._require_role(caller, Role.OPERATOR)
            snap = self._snapshot
            position = self._live_position(snap, collateral_ref)
            updated = defaults.start_grace(position, self.clock.now(), self.config.grace_period)
            self._commit(
                "mark_overdue_and_start_grace", caller, snap, snap.pool,
                updates={collateral_ref: updated},
                details={'grace_ends_at': updated.grace_ends_at},
            )
            return updated

    def declare_default(self, caller: str, collateral_ref: str) -> Position:
        """
        Raises:
            Unauthorized, PositionNotFound, GracePeriodNotStarted,
            GracePeriodNotElapsed, AlreadyInDefault
        """
        with self._writer("declare_default", caller):
            self._require_role(caller, Role.OPERATOR)
            snap = self._snapshot
            position = self._live_position(snap, collateral_ref)
            updated = defaults.declare_default(position, self.clock.now())
            self._commit(
                "declare_default", caller, snap, snap.pool,
                updates={collateral_ref: updated},
                details={'default_declared_at': updated.default_declared_at},
            )
            return updated

    def pay_recourse(self, caller: str, collateral_ref: str, amount: AmountLike) -> Repayment:
        """
        Settle a defaulted RECOURSE position from the owner's own funds.

        Raises:
            PositionNotFound, Unauthorized, RecourseModeMismatch, NotInDefault,
            InvalidAmount, OverpaymentRejected, InsufficientFunds
        """
        with self._writer("pay_recourse", caller):
            snap = self._snapshot
            position = self._live_position(snap, collateral_ref)
            self._require_owner(caller, position)
            amount = as_amount(amount)
            position, pool, accrued = interest.accrue(position, snap.pool, self.clock.now())
            position, pool, allocation = defaults.pay_recourse(
                position, pool, amount,
                self.config.overpayment_policy,
                partial_cure=self.config.recourse_partial_cure,
            )
            details = self._repayment_details(allocation, accrued)
            details['resolution'] = position.resolution.name
            self._commit(
                "pay_recourse", caller, snap, pool,
                updates={collateral_ref: position},
                moves=[Move(allocation.amount_paid, self.asset, caller, POOL_WALLET, "pay_recourse")],
                details=details,
            )
            return allocation

    def write_down_loss(self, caller: str, collateral_ref: str, loss_amount: AmountLike) -> WriteDown:
        """
        Recognise a loss on a defaulted NON_RECOURSE position: reserve first,
        then LP NAV. A write-down that clears all principal liquidates the
        position and hands the collateral to the calling administrator.

        Raises:
            Unauthorized, PositionNotFound, RecourseModeMismatch, NotInDefault,
            RecoveryWindowNotElapsed, InvalidAmount, CustodyTransferFailed
        """
        with self._writer("write_down_loss", caller):
            self._require_role(caller, Role.ADMIN)
            snap = self._snapshot
            position = self._live_position(snap, collateral_ref)
            loss_amount = as_amount(loss_amount, "loss_amount")
            now = self.clock.now()
            position, pool, _ = interest.accrue(position, snap.pool, now)
            position, pool, result = defaults.write_down(
                position, pool, loss_amount, now, self.config.recovery_window
            )

            moves = []
            if result.reserve_absorbed:
                moves.append(Move(result.reserve_absorbed, self.asset, RESERVE_WALLET, POOL_WALLET,
                                  "write_down_loss"))
            details = {
                'loss_amount': result.loss_amount,
                'reserve_absorbed': result.reserve_absorbed,
                'lp_loss': result.lp_loss,
                'interest_reversed': result.interest_reversed,
                'remaining_principal': result.remaining_principal,
            }
            if result.liquidated:
                final = replace(position, exists=False, is_in_default=False)
                self._commit(
                    "write_down_loss", caller, snap, pool,
                    archived={collateral_ref: final},
                    moves=moves,
                    custody_call=_CustodyCall("transfer_out", collateral_ref, caller),
                    details={**details, 'liquidated': True},
                )
            else:
                self._commit(
                    "write_down_loss", caller, snap, pool,
                    updates={collateral_ref: position},
                    moves=moves,
                    details=details,
                )
            return result

    # ========================================================================
    # ADMINISTRATION
    # ========================================================================

    def fund_reserve(self, caller: str, amount: AmountLike) -> int:
        """Move asset from the administrator's wallet into the reserve. Returns the new balance."""
        with self._writer("fund_reserve", caller):
            self._require_role(caller, Role.ADMIN)
            amount = as_amount(amount)
            snap = self._snapshot
            pool = reserve.fund(snap.pool, amount)
            self._commit(
                "fund_reserve", caller, snap, pool,
                moves=[Move(amount, self.asset, caller, RESERVE_WALLET, "fund_reserve")],
                details={'amount': amount},
            )
            return pool.reserve_balance

    def withdraw_reserve(self, caller: str, to: str, amount: AmountLike) -> int:
        with self._writer("withdraw_reserve", caller):
            self._require_role(caller, Role.ADMIN)
            self._require_external(to)
            amount = as_amount(amount)
            snap = self._snapshot
            pool = reserve.withdraw(snap.pool, amount)
            self._commit(
                "withdraw_reserve", caller, snap, pool,
                moves=[Move(amount, self.asset, RESERVE_WALLET, to, "withdraw_reserve")],
                details={'amount': amount, 'to': to},
            )
            return pool.reserve_balance

    def set_reserve_target(self, caller: str, bps: int) -> None:
        with self._writer("set_reserve_target", caller):
            self._require_role(caller, Role.ADMIN)
            snap = self._snapshot
            pool = reserve.set_target(snap.pool, bps)
            self._commit("set_reserve_target", caller, snap, pool, details={'bps': bps})

    def withdraw_protocol_fees(self, caller: str, to: str, amount: AmountLike) -> None:
        """
        Pay accrued protocol fees out of pool cash.

        Raises:
            Unauthorized, InvalidAmount
        """
        with self._writer("withdraw_protocol_fees", caller):
            self._require_role(caller, Role.ADMIN)
            self._require_external(to)
            amount = as_amount(amount)
            snap = self._snapshot
            if amount <= 0 or amount > snap.pool.protocol_fees_accrued:
                raise InvalidAmount(
                    f"Fee withdrawal must be in (0, {snap.pool.protocol_fees_accrued}], got {amount}"
                )
            pool = replace(
                snap.pool,
                total_liquidity_asset=snap.pool.total_liquidity_asset - amount,
                protocol_fees_accrued=snap.pool.protocol_fees_accrued - amount,
            )
            self._commit(
                "withdraw_protocol_fees", caller, snap, pool,
                moves=[Move(amount, self.asset, POOL_WALLET, to, "withdraw_protocol_fees")],
                details={'amount': amount, 'to': to},
            )

    def pause(self, caller: str) -> None:
        self._set_paused(caller, True)

    def unpause(self, caller: str) -> None:
        self._set_paused(caller, False)

    def set_risk_limits(
        self,
        caller: str,
        max_utilization_bps: Optional[int] = None,
        max_loan_bps_of_nav: Optional[int] = None,
        max_issuer_exposure_bps: Optional[int] = None,
    ) -> PoolState:
        """Update any of the RiskGuard caps. Values are basis points in [0, 10000]."""
        with self._writer("set_risk_limits", caller):
            self._require_role(caller, Role.ADMIN)
            changes = {
                name: value for name, value in (
                    ('max_utilization_bps', max_utilization_bps),
                    ('max_loan_bps_of_nav', max_loan_bps_of_nav),
                    ('max_issuer_exposure_bps', max_issuer_exposure_bps),
                ) if value is not None
            }
            for name, value in changes.items():
                if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value <= BPS_DENOMINATOR:
                    raise InvalidParameter(f"{name} must be in [0, {BPS_DENOMINATOR}], got {value!r}")
            snap = self._snapshot
            pool = replace(snap.pool, **changes)
            self._commit("set_risk_limits", caller, snap, pool, details=changes)
            return pool

    def _set_paused(self, caller: str, paused: bool) -> None:
        operation = "pause" if paused else "unpause"
        with self._writer(operation, caller):
            self._require_role(caller, Role.ADMIN)
            snap = self._snapshot
            if snap.pool.paused == paused:
                return
            self._commit(operation, caller, snap, replace(snap.pool, paused=paused))

    # ========================================================================
    # INTERNALS
    # ========================================================================

    @contextmanager
    def _writer(self, operation: str, caller: str) -> Iterator[None]:
        with self._lock:
            try:
                self._require_external(caller)
                yield
            except PoolError as e:
                logger.debug("%s by %s rejected: %s: %s", operation, caller, type(e).__name__, e)
                raise

    @staticmethod
    def _require_external(*parties: str) -> None:
        for party in parties:
            if party in _INTERNAL_WALLETS:
                raise InvalidParameter(f"{party!r} is a reserved pool wallet")

    def _require_role(self, caller: str, role: Role) -> None:
        if not self.access.has_role(caller, role):
            raise Unauthorized(f"{caller} lacks role {role.value}")

    def _require_owner(self, caller: str, position: Position) -> None:
        if caller != position.owner:
            raise Unauthorized(f"{caller} does not own position {position.collateral_ref}")

    def _require_not_paused(self, pool: PoolState) -> None:
        if pool.paused:
            raise Paused(f"Pool {self.name} is paused")

    def _live_position(self, snap: _Snapshot, collateral_ref: str) -> Position:
        position = snap.positions.get(collateral_ref)
        if position is None:
            raise PositionNotFound(f"No position for collateral {collateral_ref}")
        return position

    @staticmethod
    def _repayment_details(allocation: Repayment, accrued: int) -> Dict[str, Any]:
        return {
            'amount_offered': allocation.amount_offered,
            'amount_paid': allocation.amount_paid,
            'interest_paid': allocation.interest_paid,
            'principal_paid': allocation.principal_paid,
            'protocol_fee': allocation.protocol_fee,
            'remaining_debt': allocation.remaining_debt,
            'interest_accrued': accrued,
        }

    def _call_custody(self, call: _CustodyCall) -> None:
        method = getattr(self.custody, call.method)
        try:
            ok = method(call.collateral_ref, call.counterparty)
        except Exception as e:
            raise CustodyTransferFailed(
                f"Custody {call.method} of {call.collateral_ref} ({call.counterparty}) failed: {e}"
            ) from e
        if not ok:
            raise CustodyTransferFailed(
                f"Custody refused {call.method} of {call.collateral_ref} ({call.counterparty})"
            )

    def _commit(
        self,
        operation: str,
        caller: str,
        snap: _Snapshot,
        new_pool: PoolState,
        updates: Optional[Mapping[str, Position]] = None,
        archived: Optional[Mapping[str, Position]] = None,
        moves: Sequence[Move] = (),
        custody_call: Optional[_CustodyCall] = None,
        details: Optional[Mapping[str, Any]] = None,
    ) -> JournalEntry:
        """
        Validate side effects and apply a staged operation in one step.

        Must be called with the writer lock held and with `snap` still current.
        """
        updates = updates or {}
        archived = archived or {}
        now = self.clock.now()
        sequence = self._next_sequence

        pending = PendingTransfer(
            moves=tuple(moves),
            reference=f"{self.name}:{operation}:{sequence}",
            timestamp=now,
        )
        self.settlement.require_valid(pending)
        if custody_call is not None:
            self._call_custody(custody_call)
        result = self.settlement.execute(pending)
        if result != ExecuteResult.APPLIED:
            # require_valid passed under the lock, so this is a ledger fault
            raise SettlementError(f"Settlement of {operation} returned {result.value}")

        state_changes = []
        if new_pool != snap.pool:
            state_changes.append(StateChange("pool", snap.pool, new_pool))
        live = dict(snap.positions)
        for ref, position in updates.items():
            state_changes.append(StateChange(f"position:{ref}", snap.positions.get(ref), position))
            live[ref] = position
        for ref, position in archived.items():
            state_changes.append(StateChange(f"position:{ref}", snap.positions.get(ref), position))
            live.pop(ref, None)
            self._archive.append(position)

        self._snapshot = _Snapshot(pool=new_pool, positions=MappingProxyType(live))

        transfers = (self.settlement.transaction_log[-1].transfer_id,) if pending.moves else ()
        entry = JournalEntry(
            sequence=sequence,
            operation=operation,
            actor=caller,
            timestamp=now,
            state_changes=tuple(state_changes),
            transfer_ids=transfers,
            details=MappingProxyType(dict(details or {})),
        )
        self._journal.append(entry)
        self._next_sequence += 1

        log = logger.info if self.verbose else logger.debug
        log("%s #%d %s by %s %s", self.name, sequence, operation, caller, dict(entry.details))
        return entry
