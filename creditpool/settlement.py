"""
settlement.py - Double-Entry Wallet Ledger

The SettlementLedger holds the actual balances behind the pool's books: the
pool asset (e.g. USDC) and the LP share unit, per wallet. It is the only place
balances change, and every change is a Move between two wallets, so value is
never created or destroyed.

Key responsibilities:
    - Validates and applies transfers atomically (all moves or none)
    - Idempotent on intent_id (content hash of moves + reference)
    - Mints and burns through SYSTEM_WALLET, which is exempt from balance checks
    - Keeps an append-only transfer log for audit
    - verify_double_entry() checks per-unit conservation
"""

from __future__ import annotations
import hashlib
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

from .core import SYSTEM_WALLET, InsufficientFunds, UnitNotRegistered

logger = logging.getLogger(__name__)


class ExecuteResult(Enum):
    """
    Outcome of a transfer execution attempt.

    APPLIED: Transfer was validated and applied.
    ALREADY_APPLIED: intent_id was processed before (idempotent behavior).
    REJECTED: Transfer failed validation (unknown unit, insufficient funds).
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two wallets.

    Attributes:
        quantity: Amount in base units (positive int)
        unit_symbol: Unit being transferred ("USDC", "LPS")
        source: Wallet debited
        dest: Wallet credited
        reference: Operation that generated the move (e.g. "deposit:lp1")
    """
    quantity: int
    unit_symbol: str
    source: str
    dest: str
    reference: str

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not isinstance(self.quantity, int) or isinstance(self.quantity, bool):
            raise ValueError(f"Move quantity must be int, got {type(self.quantity)}")
        if self.quantity <= 0:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}->{self.dest})"


def _compute_intent_id(moves: Tuple[Move, ...], reference: str) -> str:
    """
    Deterministic content hash of a transfer's intent.

    Same moves under the same reference always hash the same, which makes
    re-submission of an already executed transfer a no-op.
    """
    parts = [f"ref:{reference}"]
    for m in sorted(moves, key=lambda m: (m.unit_symbol, m.source, m.dest, m.quantity)):
        parts.append(f"move:{m.quantity}|{m.unit_symbol}|{m.source}|{m.dest}|{m.reference}")
    return hashlib.sha256("|".join(parts).encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransfer:
    """A set of moves to execute together, before execution (INTENT)."""
    moves: Tuple[Move, ...]
    reference: str
    timestamp: int = 0
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            object.__setattr__(self, 'intent_id', _compute_intent_id(self.moves, self.reference))

    def is_empty(self) -> bool:
        return not self.moves


@dataclass(frozen=True, slots=True)
class Transfer:
    """An executed, immutable transfer record (FACT)."""
    moves: Tuple[Move, ...]
    reference: str
    intent_id: str
    transfer_id: str
    sequence_number: int
    timestamp: int

    def __repr__(self) -> str:
        moves = ", ".join(repr(m) for m in self.moves)
        return f"Transfer({self.transfer_id} [{self.reference}]: {moves})"


@dataclass(frozen=True, slots=True)
class Unit:
    """A unit held in the ledger. Outside SYSTEM_WALLET, balances never go negative."""
    symbol: str
    name: str


# ============================================================================
# LEDGER
# ============================================================================

class SettlementLedger:
    """
    Double-entry wallet ledger with full validation and audit trail.

    Thread Safety:
        Not thread-safe on its own. FinancingPool calls it only while holding
        its writer lock.

    Example:
        ledger = SettlementLedger("pool")
        ledger.register_unit("USDC", "USD Coin")
        ledger.issue("alice", "USDC", 1_000)
        ledger.execute(PendingTransfer(
            (Move(100, "USDC", "alice", "bob", "payment"),), reference="payment"))
    """

    def __init__(self, name: str, verbose: bool = False):
        self.name = name
        self.verbose = verbose
        self.units: Dict[str, Unit] = {}
        self.balances: Dict[str, Dict[str, int]] = {}
        self.registered_wallets: Set[str] = set()
        self.seen_intent_ids: Set[str] = set()
        self.transaction_log: List[Transfer] = []
        self._next_sequence = 0
        self._positions_by_unit: Dict[str, Dict[str, int]] = defaultdict(dict)

        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(int)

    # ========================================================================
    # READ-ONLY
    # ========================================================================

    def get_balance(self, wallet_id: str, unit_symbol: str) -> int:
        """
        Balance of a unit in a wallet.

        Unknown wallets hold nothing and return 0.

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        if wallet_id not in self.registered_wallets:
            return 0
        return self.balances[wallet_id].get(unit_symbol, 0)

    def get_positions(self, unit_symbol: str) -> Dict[str, int]:
        """All non-zero balances of a unit, by wallet."""
        return dict(self._positions_by_unit.get(unit_symbol, {}))

    def total_supply(self, unit_symbol: str) -> int:
        """
        Sum of a unit over every wallet, SYSTEM_WALLET included.

        Minting debits the system wallet, so this is zero whenever every
        change went through moves.
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return sum(self.balances[w].get(unit_symbol, 0) for w in sorted(self.registered_wallets))

    def circulating_supply(self, unit_symbol: str) -> int:
        """Sum of a unit over every wallet except SYSTEM_WALLET."""
        return self.total_supply(unit_symbol) - self.balances[SYSTEM_WALLET].get(unit_symbol, 0)

    def verify_double_entry(self, expected_supplies: Optional[Dict[str, int]] = None) -> Dict[str, Any]:
        """
        Verify that conservation holds for all units.

        Returns:
            Dict with keys:
            - 'valid': bool - True if all conservation laws hold
            - 'supplies': Dict[str, int] - total supply per unit
            - 'discrepancies': List[Dict] - unit, expected, actual, difference
        """
        expected_supplies = expected_supplies or {}
        supplies = {}
        discrepancies = []

        for unit_symbol in self.units:
            current = self.total_supply(unit_symbol)
            supplies[unit_symbol] = current
            expected = expected_supplies.get(unit_symbol, 0)
            if current != expected:
                discrepancies.append({
                    'unit': unit_symbol,
                    'expected': expected,
                    'actual': current,
                    'difference': current - expected,
                })

        for unit_symbol, expected in expected_supplies.items():
            if unit_symbol not in supplies:
                discrepancies.append({
                    'unit': unit_symbol,
                    'expected': expected,
                    'actual': 0,
                    'difference': -expected,
                    'error': 'unit not registered',
                })

        return {
            'valid': len(discrepancies) == 0,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # REGISTRATION
    # ========================================================================

    def register_unit(self, symbol: str, name: str) -> Unit:
        if symbol in self.units:
            raise ValueError(f"Unit {symbol} already registered")
        unit = Unit(symbol=symbol, name=name)
        self.units[symbol] = unit
        logger.debug("Registered unit %s (%s) in %s", symbol, name, self.name)
        return unit

    def register_wallet(self, wallet_id: str) -> str:
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        if not wallet_id or not wallet_id.strip():
            raise ValueError("Wallet id cannot be empty")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = defaultdict(int)
        return wallet_id

    def ensure_wallet(self, wallet_id: str) -> str:
        if wallet_id not in self.registered_wallets:
            self.register_wallet(wallet_id)
        return wallet_id

    # ========================================================================
    # EXECUTION
    # ========================================================================

    def validate(self, pending: PendingTransfer) -> Tuple[bool, str]:
        """
        Validate a pending transfer against unit registration and balances.

        Returns:
            (success, reason) - reason is empty on success
        """
        net: Dict[Tuple[str, str], int] = {}
        for move in pending.moves:
            if move.unit_symbol not in self.units:
                return False, f"unit not registered: {move.unit_symbol}"
            net[(move.source, move.unit_symbol)] = net.get((move.source, move.unit_symbol), 0) - move.quantity
            net[(move.dest, move.unit_symbol)] = net.get((move.dest, move.unit_symbol), 0) + move.quantity

        for (wallet, unit_sym), delta in net.items():
            if wallet == SYSTEM_WALLET:
                continue
            current = self.balances[wallet][unit_sym] if wallet in self.registered_wallets else 0
            proposed = current + delta
            if proposed < 0:
                return False, f"{wallet} {unit_sym}: balance would be {proposed}"
        return True, ""

    def require_valid(self, pending: PendingTransfer) -> None:
        """
        Raises:
            UnitNotRegistered: If a move uses an unknown unit
            InsufficientFunds: If a wallet balance would go negative
        """
        valid, reason = self.validate(pending)
        if not valid:
            if reason.startswith("unit not registered"):
                raise UnitNotRegistered(reason)
            raise InsufficientFunds(reason)

    def execute(self, pending: PendingTransfer) -> ExecuteResult:
        """
        Execute a PendingTransfer atomically.

        All moves succeed together or none is applied. Wallets named by the
        moves are registered on first use.
        """
        if pending.is_empty():
            return ExecuteResult.APPLIED

        if pending.intent_id in self.seen_intent_ids:
            logger.warning("Transfer already applied: intent_id=%s", pending.intent_id)
            return ExecuteResult.ALREADY_APPLIED

        valid, reason = self.validate(pending)
        if not valid:
            logger.debug("Transfer rejected [%s]: %s", pending.reference, reason)
            return ExecuteResult.REJECTED

        for move in pending.moves:
            self.ensure_wallet(move.source)
            self.ensure_wallet(move.dest)

        sequence = self._next_sequence
        self._next_sequence += 1
        transfer = Transfer(
            moves=pending.moves,
            reference=pending.reference,
            intent_id=pending.intent_id,
            transfer_id=f"xfer:{self.name}:{sequence:012d}",
            sequence_number=sequence,
            timestamp=pending.timestamp,
        )

        self._execute_moves(transfer.moves)
        self.transaction_log.append(transfer)
        self.seen_intent_ids.add(pending.intent_id)

        if self.verbose:
            logger.info("Applied %r", transfer)
        return ExecuteResult.APPLIED

    def issue(self, wallet_id: str, unit_symbol: str, quantity: int, reference: str = "issue") -> Transfer:
        """
        Mint `quantity` of a unit into a wallet from SYSTEM_WALLET.

        Used to fund external wallets (LPs, borrowers, the reserve funder).
        """
        pending = PendingTransfer(
            moves=(Move(quantity, unit_symbol, SYSTEM_WALLET, wallet_id, reference),),
            reference=f"{reference}:{self._next_sequence}",
        )
        self.require_valid(pending)
        self.execute(pending)
        return self.transaction_log[-1]

    def _update_position_index(self, wallet_id: str, unit_symbol: str, quantity: int) -> None:
        if quantity != 0:
            self._positions_by_unit[unit_symbol][wallet_id] = quantity
        else:
            self._positions_by_unit[unit_symbol].pop(wallet_id, None)

    def _execute_moves(self, moves) -> None:
        for move in moves:
            src = self.balances[move.source][move.unit_symbol] - move.quantity
            dst = self.balances[move.dest][move.unit_symbol] + move.quantity
            self.balances[move.source][move.unit_symbol] = src
            self.balances[move.dest][move.unit_symbol] = dst
            self._update_position_index(move.source, move.unit_symbol, src)
            self._update_position_index(move.dest, move.unit_symbol, dst)
