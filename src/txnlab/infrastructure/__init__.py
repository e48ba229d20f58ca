"""Infrastructure layer: stores, lock manager, ledger facade.

This layer depends on stdlib and third-party libs (SQLAlchemy, NetworkX)
plus the pure domain layer. It must never import from services,
commands, or output.
"""
