"""Selectors for the cycle count kernel (read side)."""

from cyclecount_kernel.selectors.journal_selector import JournalSelector

__all__ = ["JournalSelector"]
