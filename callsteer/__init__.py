"""
CallSteer -- Call-Steering Session Engine.

Tracks live heart-failure check-in calls, applies clinician steering
actions to them, derives voice-biomarker risk indicators, and records
emergency escalations for clinician review.

DISCLAIMER: CallSteer is clinical workflow software.  Its metrics and risk
indicators are not diagnostic, and it does not contact emergency services
itself.
"""

__version__ = "0.1.0"
