"""
Veryfin - Source Package

A personal finance backend: expenses, budgets, savings goals and
savings streak challenges, each owned by exactly one user.

DESIGN PRINCIPLES:
1. Every read and write is scoped to the owning user
2. Someone else's record looks exactly like a missing one
3. Money is Decimal, never float
4. Streak progress is derived, never typed in
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Veryfin Team"
