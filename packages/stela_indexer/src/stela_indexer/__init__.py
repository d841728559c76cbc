"""
Stela Indexer - event ingestion and liquidation for the Stela protocol.

It provides:
- Event contracts (kinds, statuses, u256 helpers, domain events)
- Chain providers (JSON-RPC node, starknet-py account, in-memory stub)
- Log fetcher and event decoder
- Indexer-owned persistence models and repositories
- State reconciler and ingestion pipeline
- Liquidation scheduler

Derived tables are written ONLY by the reconciler (plus the structural
terms path). The liquidation scheduler reads them and never writes.
"""
