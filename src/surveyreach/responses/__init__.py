"""
Survey submissions from respondents.
"""
