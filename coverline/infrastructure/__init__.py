"""
Infrastructure Layer

Adapters around external systems: the multi-level cache (Redis remote
tier) and monitoring (Prometheus collector, rolling metrics recorder).
"""
