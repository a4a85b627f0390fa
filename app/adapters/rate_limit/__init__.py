"""Rate limiting adapters.

The limiter counts requests in the shared key-value store, so every worker
process enforces the same budget per identifier.
"""
