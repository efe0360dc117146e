"""
Integration tests.

These exercise component interactions against real backends:
- Redis remote tier behind MultiLevelCache
- Degradation and recovery when Redis disappears mid-flight

They need a reachable Redis (REDIS_HOST / REDIS_PORT) and are skipped
otherwise. Run with: pytest -m integration
"""
