"""Dropout Sentinel.

Dropout risk scoring and escalation notification pipeline: scores students
from attendance, academic, financial, behavioral, health, distance and
family signals, and alerts staff by in-app, email and SMS when a student's
risk level rises.

Copyright (C) 2025 Global Digital Labs (gdlabs.io)
SPDX-License-Identifier: LGPL-3.0-or-later
"""

__version__ = "1.0.0"
