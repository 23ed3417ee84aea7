"""
creditpool - Pooled-Liquidity Invoice Financing

Liquidity providers deposit a stable asset into a shared pool and receive LP
shares. Borrowers lock tokenized invoices as collateral and draw credit lines
against them; repayments return principal and interest to the pool. Overdue
positions go through grace, default and resolution (recourse claim or
write-down absorbed by a first-loss reserve before LP NAV).

Usage:
    from creditpool import (
        FinancingPool, PoolConfig, RoleRegistry, InMemoryCustody, ManualClock,
        RecourseMode, SECONDS_PER_DAY,
    )

    roles = RoleRegistry(admins=["treasury"], operators=["agent"])
    custody = InMemoryCustody()
    clock = ManualClock(start=1_700_000_000)
    pool = FinancingPool(roles, custody, clock, config=PoolConfig(protocol_fee_bps=1000))

    # Fund external wallets, then provide liquidity
    pool.settlement.issue("lp1", "USDC", 100_000)
    pool.deposit("lp1", 100_000)

    # Lock an invoice and draw against it
    custody.mint("INV-001", "acme")
    pool.lock_collateral("acme", "INV-001", "acme", face_value=50_000,
                         due_date=clock.now() + 60 * SECONDS_PER_DAY)
    pool.draw_credit("acme", "INV-001", 30_000)

    clock.advance(30 * SECONDS_PER_DAY)
    pool.repay_credit("acme", "INV-001", pool.outstanding_debt("INV-001"))
    pool.release_collateral("agent", "INV-001")
"""

# Core types
from .core import (
    PoolState,
    Position,
    PositionView,
    PositionStage,
    Repayment,
    WriteDown,
    StateChange,
    JournalEntry,
    RecourseMode,
    Resolution,
    Role,
    OverpaymentPolicy,
    AccessControl,
    CollateralCustody,
    Clock,
    SECONDS_PER_DAY,
    SECONDS_PER_YEAR,
    GRACE_PERIOD,
    RECOVERY_WINDOW,
    SYSTEM_WALLET,
    POOL_WALLET,
    RESERVE_WALLET,
)

# Errors
from .core import (
    PoolError,
    Paused,
    InvalidParameter,
    InvalidAmount,
    InsufficientLiquidity,
    InsufficientShares,
    PoolInsolvent,
    RiskLimitExceeded,
    UtilizationLimitExceeded,
    MaxSingleLoanExceeded,
    IssuerExposureLimitExceeded,
    CreditLineExceeded,
    PositionNotFound,
    PositionAlreadyExists,
    Unauthorized,
    GracePeriodNotElapsed,
    GracePeriodNotStarted,
    GracePeriodAlreadyStarted,
    NotOverdue,
    RecoveryWindowNotElapsed,
    AlreadyInDefault,
    NotInDefault,
    RecourseModeMismatch,
    InvalidPositionState,
    OverpaymentRejected,
    CustodyTransferFailed,
    ArithmeticOverflow,
    SettlementError,
    InsufficientFunds,
    UnitNotRegistered,
)

# Fixed-point math
from .fixed_point import (
    WAD,
    BPS_DENOMINATOR,
    mul_div_down,
    mul_div_up,
    wad_mul_down,
    wad_div_down,
    bps_of,
    to_wad,
    from_wad,
    as_amount,
)

# Configuration
from .config import PoolConfig, load_config

# Pure calculation functions (all inputs explicit)
from .liquidity import (
    calculate_nav,
    calculate_share_price,
    calculate_utilization_bps,
    calculate_available_liquidity,
    calculate_shares_for_deposit,
    calculate_withdrawal_amount,
)
from .interest import (
    calculate_interest_delta,
    calculate_pending_interest,
    calculate_total_debt,
)
from .positions import (
    calculate_max_credit_line,
    calculate_issuer_exposure,
    calculate_payment_allocation,
)
from .risk_guard import RiskSnapshot, risk_snapshot
from .reserve import ReserveStatus, reserve_status

# Settlement
from .settlement import (
    SettlementLedger,
    Move,
    PendingTransfer,
    Transfer,
    Unit,
    ExecuteResult,
)

# Collaborators
from .collaborators import RoleRegistry, InMemoryCustody, ManualClock, SystemClock

# Engine
from .pool import FinancingPool

# Logging
from .logging_setup import configure_logging


__all__ = [
    # Core
    'PoolState', 'Position', 'PositionView', 'PositionStage',
    'Repayment', 'WriteDown', 'StateChange', 'JournalEntry',
    'RecourseMode', 'Resolution', 'Role', 'OverpaymentPolicy',
    'AccessControl', 'CollateralCustody', 'Clock',
    'SECONDS_PER_DAY', 'SECONDS_PER_YEAR', 'GRACE_PERIOD', 'RECOVERY_WINDOW',
    'SYSTEM_WALLET', 'POOL_WALLET', 'RESERVE_WALLET',
    # Errors
    'PoolError', 'Paused', 'InvalidParameter', 'InvalidAmount',
    'InsufficientLiquidity', 'InsufficientShares', 'PoolInsolvent',
    'RiskLimitExceeded', 'UtilizationLimitExceeded', 'MaxSingleLoanExceeded',
    'IssuerExposureLimitExceeded', 'CreditLineExceeded',
    'PositionNotFound', 'PositionAlreadyExists', 'Unauthorized',
    'GracePeriodNotElapsed', 'GracePeriodNotStarted', 'GracePeriodAlreadyStarted',
    'NotOverdue', 'RecoveryWindowNotElapsed', 'AlreadyInDefault', 'NotInDefault',
    'RecourseModeMismatch', 'InvalidPositionState', 'OverpaymentRejected',
    'CustodyTransferFailed', 'ArithmeticOverflow',
    'SettlementError', 'InsufficientFunds', 'UnitNotRegistered',
    # Fixed-point math
    'WAD', 'BPS_DENOMINATOR', 'mul_div_down', 'mul_div_up', 'wad_mul_down',
    'wad_div_down', 'bps_of', 'to_wad', 'from_wad', 'as_amount',
    # Configuration
    'PoolConfig', 'load_config',
    # Pure calculations
    'calculate_nav', 'calculate_share_price', 'calculate_utilization_bps',
    'calculate_available_liquidity', 'calculate_shares_for_deposit',
    'calculate_withdrawal_amount',
    'calculate_interest_delta', 'calculate_pending_interest', 'calculate_total_debt',
    'calculate_max_credit_line', 'calculate_issuer_exposure', 'calculate_payment_allocation',
    'RiskSnapshot', 'risk_snapshot', 'ReserveStatus', 'reserve_status',
    # Settlement
    'SettlementLedger', 'Move', 'PendingTransfer', 'Transfer', 'Unit', 'ExecuteResult',
    # Collaborators
    'RoleRegistry', 'InMemoryCustody', 'ManualClock', 'SystemClock',
    # Engine
    'FinancingPool',
    # Logging
    'configure_logging',
]

__version__ = '1.0.0'
