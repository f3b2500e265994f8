"""SignalRank: multi-signal recommendation and ranking engine.

This package ranks catalog items for a shopper's session by blending
exploration-exploitation sampling, trending velocity, cart affinity and
collaborative filtering, and improves itself from feedback events.

Modules:
    api: FastAPI application and REST API endpoints
    engine: Scorers, signal fusion and feedback recording
"""

__version__ = "0.1.0"
