"""
SurveyReach: survey delivery with reminder and voice-call escalation.
"""

__version__ = "0.1.0"
