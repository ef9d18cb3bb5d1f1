"""
Survey catalog.
"""
