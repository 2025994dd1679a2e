"""
Inventory Kernel

A transactional stock ledger with:
- One quantity row per (item, location) pair
- Append-only adjustment audit trail
- Atomic, lock-ordered confirmation of purchase and usage documents
"""

__version__ = "0.1.0"
