"""Web boundary layer.

Contracts define the wire format, services call into the swap pipeline,
controllers expose them over HTTP.
"""

__all__ = [
    "contracts",
    "services",
    "controllers",
]
