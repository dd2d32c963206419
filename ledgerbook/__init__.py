"""
Ledgerbook - Source Package

A personal ledger that reconciles manually reported account balances
against logged transactions and keeps per-tag usage statistics.

DESIGN PRINCIPLES:
1. Reported balances are the truth; logged transactions explain them
2. Unexplained spending is surfaced, never hidden or clamped
3. Derived figures are recomputed, not hand-edited
4. Storage layer is swappable (remote KV with local fallback)
5. Backups are best-effort and never block the user
"""

__version__ = "1.0.0"
__author__ = "Ledgerbook Team"
