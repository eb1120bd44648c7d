# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Student data provider.

The risk pipeline does not own student records. It reads them through a
StudentDataProvider, whose production implementation calls the student
records service over HTTP.

Endpoints used (relative to STUDENT_DATA_BASE_URL):
    GET /students/active                    -> {"data": ["<id>", ...]}
    GET /students/{id}                      -> {"data": {id, full_name, roll_number, is_active}}
    GET /students/{id}/risk-signals         -> {"data": {<signal>: <value>, ...}}
    GET /students/{id}/alert-recipients     -> {"data": ["<user id>", ...]}

Example:
    >>> provider = HttpStudentDataProvider(settings.student_data)
    >>> signals = await provider.get_signals("stu-1")
    >>> await provider.close()
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from src.core.config.settings import StudentDataSettings
from src.core.exceptions import NotFoundError, RiskPipelineError, ValidationError
from src.core.risk.factors import StudentSignals

logger = logging.getLogger(__name__)


class StudentDataError(RiskPipelineError):
    """The student records service failed or was unreachable."""


@dataclass(frozen=True)
class StudentRecord:
    """Identity of a student, as shown in alerts.

    Attributes:
        student_id: Student identifier.
        full_name: Display name.
        roll_number: School roll number.
        is_active: Whether the student is currently enrolled.
    """

    student_id: str
    full_name: str
    roll_number: str = ""
    is_active: bool = True


class StudentDataProvider(Protocol):
    """Source of student signals, identities and alert recipients."""

    async def get_signals(self, student_id: str) -> StudentSignals:
        ...

    async def get_student(self, student_id: str) -> StudentRecord:
        ...

    async def list_active_student_ids(self) -> list[str]:
        ...

    async def list_alert_recipient_ids(self, student_id: str) -> list[str]:
        ...


class HttpStudentDataProvider:
    """StudentDataProvider backed by the student records HTTP API.

    Raises NotFoundError on 404, ValidationError on malformed payloads and
    StudentDataError on any other HTTP or network failure.
    """

    def __init__(
        self,
        settings: StudentDataSettings,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            settings: Student records service configuration.
            client: Optional preconfigured HTTP client.
        """
        self._settings = settings
        self._client = client
        self._local = threading.local()

    def _http(self) -> httpx.AsyncClient:
        """Client for the running event loop.

        httpx connection pools are bound to the loop that opened them, and
        each Dramatiq worker thread runs its own loop.
        """
        if self._client is not None:
            return self._client
        loop = asyncio.get_running_loop()
        client = getattr(self._local, "client", None)
        if client is None or getattr(self._local, "loop", None) is not loop:
            client = httpx.AsyncClient(
                base_url=self._settings.base_url,
                headers=self._settings.auth_headers,
                timeout=self._settings.timeout,
            )
            self._local.client = client
            self._local.loop = loop
        return client

    async def close(self) -> None:
        """Close the HTTP client of the current thread."""
        client = self._client or getattr(self._local, "client", None)
        if client is not None:
            await client.aclose()
        self._local.client = None
        self._local.loop = None

    async def _get(self, path: str, resource: str, resource_id: str) -> Any:
        try:
            response = await self._http().get(path)
        except httpx.HTTPError as e:
            logger.error("Student records request failed for %s: %s", path, str(e))
            raise StudentDataError(f"Request failed: {path}", {"error": str(e)}) from e

        if response.status_code == httpx.codes.NOT_FOUND:
            raise NotFoundError(resource, resource_id)

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("Student records returned %d for %s", response.status_code, path)
            raise StudentDataError(
                f"Student records returned {response.status_code}",
                {"path": path, "body": response.text[:500]},
            ) from e

        try:
            body = response.json()
        except ValueError as e:
            raise ValidationError(f"Response for {path} is not JSON") from e

        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    async def get_signals(self, student_id: str) -> StudentSignals:
        """Fetch and validate a student's risk signals.

        Individual invalid values are dropped by StudentSignals.from_payload.

        Raises:
            NotFoundError: If the student does not exist.
            ValidationError: If the payload is not an object.
        """
        data = await self._get(f"/students/{student_id}/risk-signals", "Student", student_id)
        if not isinstance(data, dict):
            raise ValidationError(
                f"Malformed signals payload for student {student_id}",
                details={"type": type(data).__name__},
            )
        signals = StudentSignals.from_payload(student_id, data)
        if signals.invalid_fields:
            logger.warning(
                "Dropped invalid signals for student %s: %s",
                student_id,
                ", ".join(signals.invalid_fields),
            )
        return signals

    async def get_student(self, student_id: str) -> StudentRecord:
        data = await self._get(f"/students/{student_id}", "Student", student_id)
        if not isinstance(data, dict) or not data.get("full_name"):
            raise ValidationError(
                f"Malformed student payload for {student_id}",
                fields=["full_name"],
            )
        return StudentRecord(
            student_id=str(data.get("id", student_id)),
            full_name=str(data["full_name"]),
            roll_number=str(data.get("roll_number") or ""),
            is_active=bool(data.get("is_active", True)),
        )

    async def list_active_student_ids(self) -> list[str]:
        data = await self._get("/students/active", "Student list", "active")
        if not isinstance(data, list):
            raise ValidationError("Malformed active student list")
        return [str(item) for item in data]

    async def list_alert_recipient_ids(self, student_id: str) -> list[str]:
        """Users to alert about a student: counselors and administrators."""
        data = await self._get(
            f"/students/{student_id}/alert-recipients", "Student", student_id
        )
        if not isinstance(data, list):
            raise ValidationError(f"Malformed recipient list for student {student_id}")
        return [str(item) for item in data]
