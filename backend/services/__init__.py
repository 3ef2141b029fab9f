"""
Task placement and dependency engine.

Every public function takes ``(db, ctx, ...)``: a SQLAlchemy session and the
caller's TenantContext, and runs as one transaction.
"""
