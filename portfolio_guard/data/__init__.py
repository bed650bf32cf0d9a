# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""Usage store interface and backends."""

from .redis import RedisUsageStore, build_store
from .store import (
    CounterState,
    InMemoryUsageStore,
    UsageStore,
    read_modify_write,
)

__all__ = [
    "CounterState",
    "InMemoryUsageStore",
    "RedisUsageStore",
    "UsageStore",
    "build_store",
    "read_modify_write",
]
