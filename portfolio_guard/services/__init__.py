# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Services

Services layer connecting:
- Admission checks (blacklist, request shape, rate limit, reflink budget)
- Context assembly
- Usage accounting and content inspection
"""

from .container import CleanupReport, Services, build_services, register_configured_sources
from .orchestrator import (
    SUSPICIOUS_ACTIVITY,
    AccessOrchestrator,
    AdmissionDecision,
    AdmissionRequest,
    UsageOutcome,
)

__all__ = [
    "AccessOrchestrator",
    "AdmissionDecision",
    "AdmissionRequest",
    "UsageOutcome",
    "SUSPICIOUS_ACTIVITY",
    "CleanupReport",
    "Services",
    "build_services",
    "register_configured_sources",
]
