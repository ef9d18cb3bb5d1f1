"""
Email notification package.

Keep imports lightweight; do not import providers here.
"""

__all__ = [
    "config",
    "interface",
    "factory",
    "smtp_provider",
    "mock_provider",
    "rendering",
]
