"""
Email reminder planning and delivery.
"""
