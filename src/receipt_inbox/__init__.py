"""
Receipt Inbox → durable upload pipeline.

Captured receipts are persisted locally and delivered to a remote endpoint
at-least-once, surviving process termination mid-transfer and reconciling
in-flight bookkeeping against durable record state on every cold start.
"""

__version__ = "0.1.0"
