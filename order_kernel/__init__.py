"""
Order Kernel - Order, Ledger & Fulfillment Engine

A webhook-driven order pipeline with:
- Atomic order creation with per-producer fulfillment split
- Append-only ledger with integer-cent profit splits
- Proportional refunds that never mutate history
- Exactly-once processing of external payment events
- Producer dispatch with bounded, persisted retry
"""

__version__ = "0.1.0"
