"""Engine plumbing shared by every operation: the explicit EngineContext and outbound events.

Kept free of FastAPI and redis concerns so the engine can run in tests and scripts.
"""
