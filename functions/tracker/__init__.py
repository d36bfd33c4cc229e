"""
Net worth snapshot tracker.

A small authenticated API where each signed-in user records dated net worth
snapshots. The same store contract is served by a long-running FastAPI app
and by a Firebase HTTPS function.
"""
