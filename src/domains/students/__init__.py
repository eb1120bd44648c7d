# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Student data domain package.

This package provides read access to the student records service:
- Risk signals for scoring
- Student identity for alert messages
- Active student and alert recipient listings
"""

from src.domains.students.provider import (
    HttpStudentDataProvider,
    StudentDataError,
    StudentDataProvider,
    StudentRecord,
)

__all__ = [
    "HttpStudentDataProvider",
    "StudentDataError",
    "StudentDataProvider",
    "StudentRecord",
]
