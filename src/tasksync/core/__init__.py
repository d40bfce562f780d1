"""Core sync engine modules.

This package contains the engine organized by concern:
- sync: tombstones, merging, document updates and orchestration
- remote: transports, document clients and auth
- storage: snapshot codec and local persistence
"""

__all__: list[str] = []
