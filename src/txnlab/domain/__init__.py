"""Domain layer: pure types, error vocabulary, outcomes, classification.

This layer depends only on the standard library.
It must never import from infrastructure, services, commands, or output.
"""
