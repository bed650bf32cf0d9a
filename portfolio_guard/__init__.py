# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Portfolio Guard - AI Access-Control & Context-Assembly Engine

Sits in front of a portfolio site's AI assistant and decides, per
request, whether the visitor may call the model, how much of the
owner's budget they may spend, and which portfolio content the model
gets to see.

Quick Start:
    from portfolio_guard import InMemoryUsageStore, Settings, build_services

    services = await build_services(Settings(), InMemoryUsageStore())
    decision = await services.orchestrator.admit(AdmissionRequest(...))

Architecture:

    request
      -> blacklist -> request shape -> rate limit -> reflink budget
      -> context (sources -> relevance -> token budget -> session cache)
      -> model call (outside this package)
      -> usage accounting -> content analysis -> violation -> notification

All imports are lazy; heavy modules load on first attribute access.
"""

from __future__ import annotations

import importlib
from typing import TYPE_CHECKING

__version__ = "1.0.0"

if TYPE_CHECKING:
    from .core.settings import Settings as Settings
    from .core.settings import get_settings as get_settings
    from .data.store import InMemoryUsageStore as InMemoryUsageStore
    from .data.store import UsageStore as UsageStore
    from .services import AccessOrchestrator as AccessOrchestrator
    from .services import AdmissionDecision as AdmissionDecision
    from .services import AdmissionRequest as AdmissionRequest
    from .services import Services as Services
    from .services import build_services as build_services

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    # Settings
    "Settings": (".core.settings", "Settings"),
    "get_settings": (".core.settings", "get_settings"),
    # Store
    "UsageStore": (".data.store", "UsageStore"),
    "InMemoryUsageStore": (".data.store", "InMemoryUsageStore"),
    # Services
    "Services": (".services", "Services"),
    "build_services": (".services", "build_services"),
    "AccessOrchestrator": (".services", "AccessOrchestrator"),
    "AdmissionRequest": (".services", "AdmissionRequest"),
    "AdmissionDecision": (".services", "AdmissionDecision"),
}

__all__ = [
    "__version__",
    *_LAZY_IMPORTS.keys(),
]


def __getattr__(name: str) -> object:
    if name in _LAZY_IMPORTS:
        module_path, attr_name = _LAZY_IMPORTS[name]
        module = importlib.import_module(module_path, __name__)
        value = getattr(module, attr_name)
        globals()[name] = value
        return value
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
