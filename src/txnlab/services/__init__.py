"""Service layer: transfer, retry, isolation and harness logic.

Services may import from domain and infrastructure layers.
They must never import from commands or output.
"""
