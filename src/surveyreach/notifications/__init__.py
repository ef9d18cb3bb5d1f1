"""
Outbound notification channels.
"""
