# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Background job actors.

- base: run_async bridge from sync actors to thread-local event loops
- risk: daily risk sweep, rapid increase check, targeted recalculation

Channel delivery actors live with the delivery queues in
src.infrastructure.notifications.queues.
"""

from src.infrastructure.background.tasks.base import run_async
from src.infrastructure.background.tasks.risk import RiskJobs

__all__ = [
    "RiskJobs",
    "run_async",
]
