"""Admission package — charge accumulator and abuse advisor.

Public surface
--------------
- :class:`AdmissionController` — owns the charge state and activity history.
- :func:`detect_abuse`         — pure abuse-rule evaluation over a history.
- Result records: :class:`ActivityResult`, :class:`DischargeResult`,
  :class:`DischargeRejected`, :class:`BoostResult`, :class:`AbuseReport`,
  :class:`ChargeSnapshot`, :class:`ActivityEvent`.
"""

from mint_pipeline.admission.abuse import detect_abuse
from mint_pipeline.admission.controller import AdmissionController
from mint_pipeline.admission.types import (
    NO_ABUSE,
    AbusePattern,
    AbuseReport,
    ActivityEvent,
    ActivityResult,
    BoostResult,
    ChargeSnapshot,
    DischargeRejected,
    DischargeResult,
    RecommendedAction,
)

__all__ = [
    "NO_ABUSE",
    "AbusePattern",
    "AbuseReport",
    "ActivityEvent",
    "ActivityResult",
    "AdmissionController",
    "BoostResult",
    "ChargeSnapshot",
    "DischargeRejected",
    "DischargeResult",
    "RecommendedAction",
    "detect_abuse",
]
