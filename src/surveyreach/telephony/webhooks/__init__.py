"""
Inbound voice provider webhooks.
"""
