# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
API Gateway

FastAPI application exposing admission checks, context retrieval,
usage accounting and the admin surface.
"""

from .app import create_app

__all__ = ["create_app"]
