# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Background job infrastructure.

Provides durable background processing with Dramatiq:
- Redis broker for message persistence (StubBroker in tests)
- Thread-local event loops bridging sync actors to async code
- Risk sweep actors
- APScheduler integration for periodic jobs

Running Workers:
    dramatiq src.worker --processes 2 --threads 4

Scheduler:
    python -m src.main
"""

from src.infrastructure.background.broker import BrokerManager, Queues, use_stub_broker
from src.infrastructure.background.scheduler import (
    DramatiqScheduler,
    ScheduledTask,
    register_default_tasks,
)
from src.infrastructure.background.tasks import RiskJobs, run_async

__all__ = [
    "BrokerManager",
    "DramatiqScheduler",
    "Queues",
    "RiskJobs",
    "ScheduledTask",
    "register_default_tasks",
    "run_async",
    "use_stub_broker",
]
