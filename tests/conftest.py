"""
conftest.py - Shared pytest fixtures for creditpool tests

Provides common fixtures used across unit, functional and conformance tests:
- Collaborators (roles, custody, manual clock)
- Pools (empty, LP-funded, with a locked invoice)
- Snapshot builders for the pure-function tests
"""

import pytest

from creditpool import (
    FinancingPool, PoolConfig, PoolState, Position,
    RoleRegistry, InMemoryCustody, ManualClock,
    RecourseMode, SECONDS_PER_DAY,
)


# =============================================================================
# CONSTANTS
# =============================================================================

T0 = 1_700_000_000
ADMIN = "treasury"
OPERATOR = "agent"
LP = "lp1"
BORROWER = "acme"
INVOICE = "INV-001"


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def make_pool_state(**overrides) -> PoolState:
    """PoolState with defaults overridden by keyword."""
    return PoolState(**overrides)


def make_position(**overrides) -> Position:
    """A NON_RECOURSE position on a 500 face-value invoice, due in 30 days."""
    values = dict(
        owner=BORROWER,
        collateral_ref=INVOICE,
        face_value=500,
        ltv_bps=6000,
        max_credit_line=300,
        recourse_mode=RecourseMode.NON_RECOURSE,
        due_date=T0 + 30 * SECONDS_PER_DAY,
        last_accrual_timestamp=T0,
        created_at=T0,
    )
    values.update(overrides)
    return Position(**values)


def build_pool(config: PoolConfig = None, start: int = T0):
    """Return (pool, roles, custody, clock) wired together."""
    roles = RoleRegistry(admins=[ADMIN], operators=[OPERATOR])
    custody = InMemoryCustody()
    clock = ManualClock(start=start)
    pool = FinancingPool(roles, custody, clock, config=config)
    return pool, roles, custody, clock


def fund(pool: FinancingPool, wallet: str, amount: int) -> None:
    """Mint pool asset into an external wallet."""
    pool.settlement.issue(wallet, pool.asset, amount)


def lock_invoice(pool, custody, clock, ref=INVOICE, owner=BORROWER, face_value=500,
                 days=30, mode=RecourseMode.NON_RECOURSE):
    """Mint an invoice to `owner`, lock it and optionally switch recourse mode."""
    custody.mint(ref, owner)
    position = pool.lock_collateral(owner, ref, owner, face_value, clock.now() + days * SECONDS_PER_DAY)
    if mode != position.recourse_mode:
        position = pool.set_position_recourse_mode(owner, ref, mode)
    return position


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    return ManualClock(start=T0)


@pytest.fixture
def roles():
    return RoleRegistry(admins=[ADMIN], operators=[OPERATOR])


@pytest.fixture
def custody():
    return InMemoryCustody()


@pytest.fixture
def config():
    return PoolConfig()


@pytest.fixture
def pool(roles, custody, clock, config):
    """Empty pool with default terms."""
    return FinancingPool(roles, custody, clock, config=config)


@pytest.fixture
def funded_pool(pool):
    """Pool holding a 10,000 LP deposit, with 1,000 in the borrower's wallet."""
    fund(pool, LP, 10_000)
    pool.deposit(LP, 10_000)
    fund(pool, BORROWER, 1_000)
    fund(pool, ADMIN, 5_000)
    return pool


@pytest.fixture
def locked_pool(funded_pool, custody, clock):
    """Funded pool with a 500 face-value invoice locked by the borrower."""
    lock_invoice(funded_pool, custody, clock)
    return funded_pool
