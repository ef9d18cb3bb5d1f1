"""
Voice call provider integration.

Keep package import side-effects to a minimum to avoid circular imports.
Do not import factory/adapters here.
"""

__all__ = [
    "interface",
    "config",
    "factory",
    "vapi_adapter",
    "mock_adapter",
]
