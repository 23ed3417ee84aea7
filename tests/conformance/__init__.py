"""
Credit pool conformance tests.

Each module states the invariants it checks in its docstring and drives them
with hypothesis:

- test_pool_invariants: NAV formula, reconciliation against the wallet
  ledger, credit-line bound, atomic rejections, share-price monotonicity and
  the protocol fee taken on repayment
- test_loss_waterfall: the reserve absorbs a write-down before LP NAV, and a
  full write-down liquidates the position
- test_settlement_conservation: every unit's supply sums to zero across
  wallets, with rejected transfers leaving balances untouched
"""
