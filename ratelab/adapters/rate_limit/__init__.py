"""Window limiter adapters.

One limiter instance exists per logical purpose (client addresses, tested
URLs, custom endpoints); all share the interface in ``base``.
"""
