"""
ORM model registry.

Importing this module registers every table on Base.metadata.
"""

from surveyreach.participants.models import Batch, Participant  # noqa: F401
from surveyreach.reminders.models import ReminderMarker  # noqa: F401
from surveyreach.responses.models import SurveySubmission  # noqa: F401
from surveyreach.surveys.models import Survey  # noqa: F401
from surveyreach.telephony.models import CallTranscriptEntry  # noqa: F401
