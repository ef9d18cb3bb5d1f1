"""
Send batches and their participants.
"""
