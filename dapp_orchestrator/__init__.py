"""
dapp_orchestrator: transaction orchestration for a Solana wallet-integration demo.

Builds legacy and versioned transfers, manages address lookup tables, routes
signing requests to an external wallet, submits to the cluster and polls for
confirmation. Every use-case reports through an append-only event log.
"""

__version__ = "0.1.0"
