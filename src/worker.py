# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Dramatiq worker entrypoint.

Importing this module builds the pipeline context, which declares the
channel delivery actors and the risk sweep actors on the broker.

Running Workers:
    dramatiq src.worker --processes 2 --threads 4
"""

from src.core.config import get_settings
from src.core.context import build_context
from src.utils.logging import setup_logging

settings = get_settings()
setup_logging(settings)

context = build_context(settings)
broker = context.broker
