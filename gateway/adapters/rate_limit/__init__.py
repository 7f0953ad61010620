"""Counter stores for admission control.

The admission controller depends only on ``AbstractCounterStore`` so the
in-memory store used by a single gateway instance can be replaced by a shared
store (e.g. Redis) for multi-instance deployments.
"""
