"""
                        Services Module

Contains the sync engine services with the hybrid architecture pattern.
Stores and upstream clients have Mock (development) and Real (production)
implementations selected by ENV_MODE.

Services:
    - kv: key-value cache store (in-memory / Redis)
    - toast: upstream POS API access (pacing, auth, retries)
    - orders: order cache, cursor store and incremental collector
    - menu: menu index and revision-cached menu repository
    - expansion: expanded order pipeline
    - feed: composes orders + menu into dashboard payloads
"""
