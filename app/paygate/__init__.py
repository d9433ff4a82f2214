"""
Payment gate: on-chain payment verification and access grants.

This package gates priced resources behind proof of an on-chain payment,
following the HTTP 402 Payment Required pattern.

Key components:
- fees: Fee schedule mapping resource types to payment terms
- store: Durable grant store with a unique constraint on tx references
- session_cache: Best-effort cache of granted flags
- ledger: JSON-RPC client for reading transactions and receipts
- verifier: Turns a transaction reference into a grant
- gate: Access decision for a (subject, resource) pair
- middleware: FastAPI middleware returning 402 for unpaid requests
- audit: Append-only log of verification attempts

Configuration is loaded from environment variables via app.core.config.
"""

__version__ = "0.1.0"
