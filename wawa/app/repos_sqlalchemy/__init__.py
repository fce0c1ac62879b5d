"""SQLAlchemy-backed repository implementations.

Every helper takes a caller-owned ``Session`` and leaves committing to
:func:`wawa.app.db.unit_of_work`. Guard fields are only flipped with filtered
``UPDATE`` statements whose row count reports the winner.
"""
