"""
Stela Base - shared runtime plumbing.

Provides:
- Settings (environment-driven, cached)
- Logging setup (JSON or plain text)
- Database engine / session helpers
- Redis client and lock helpers

Domain code lives in stela_indexer. Nothing here knows about agreements,
inscriptions or events.
"""
