"""
Airtable Repositories
=====================

Repositories over the Airtable REST API: tasks (``TaskRepository``),
observations and the fuel ledger.

Handles:
- Field mapping between the models and the Airtable table columns
- Server-side filtering (``filterByFormula``) and sorting
- Offset-cursor pagination
- HTTP status / transport failures mapped onto the error taxonomy
"""

import logging
from datetime import date, datetime
from typing import Any, Callable, Iterable, Optional

import httpx

from taskflow.config import Settings
from taskflow.core.errors import (
    ConfigurationError,
    ConnectivityError,
    ErrorCodes,
    remote_error_for_status,
)
from taskflow.core.filters import filter_window
from taskflow.models.fuel import FuelOperation
from taskflow.models.observation import Observation
from taskflow.models.task import FilterKey, Task, TaskImportance, TaskStatus
from taskflow.schemas.fuel import FuelOperationCreate, FuelPage
from taskflow.schemas.observation import ObservationCreate, ObservationPage
from taskflow.schemas.task import TaskCreate, TaskPage, TaskPatch
from taskflow.utils.helpers import parse_datetime, utc_now

logger = logging.getLogger(__name__)

# Task attribute -> Airtable column
FIELD_MAP = {
    "title": "Task",
    "description": "Notes",
    "status": "Status",
    "due_date": "To Do Date",
    "completed_date": "Completed Date",
    "images": "Photos",
    "is_repeating": "Repeated Task",
    "repeat_every_days": "Repeat Every X Days",
    "importance": "Importance",
}

SORT = (("Importance", "desc"), ("To Do Date", "asc"))

OBSERVATION_FIELDS = ("Observation", "Notes", "Who Observed", "Related Tasks", "Date", "Photos")
OBSERVATION_SORT = (("Date", "desc"),)

FUEL_FIELDS = ("Operation", "How Much in Leters", "When", "Fuel Type", "Who?", "Notes")
FUEL_SORT = (("When", "desc"),)


def _airtable_date(value: datetime) -> str:
    return value.date().isoformat()


def filter_formula(filter_key: FilterKey, today: date) -> Optional[str]:
    """Build the ``filterByFormula`` expression for *filter_key*."""
    window = filter_window(filter_key, today)
    clauses = []
    if window.after is not None:
        clauses.append(f"IS_AFTER({{To Do Date}}, '{window.after.isoformat()}')")
    if window.before is not None:
        clauses.append(f"IS_BEFORE({{To Do Date}}, '{window.before.isoformat()}')")
    if window.start is not None:
        clauses.append(f"{{To Do Date}} >= '{window.start.isoformat()}'")
    if window.end is not None:
        clauses.append(f"{{To Do Date}} <= '{window.end.isoformat()}'")
    if window.exclude_done:
        clauses.append(f"{{Status}} != '{TaskStatus.DONE.value}'")
    if not clauses:
        return None
    return f"AND({', '.join(clauses)})"


def record_to_task(record: dict[str, Any], fallback_due: datetime) -> Task:
    """Map an Airtable record onto a ``Task``."""
    fields = record.get("fields", {})
    completed = fields.get("Completed Date")
    return Task(
        id=record["id"],
        title=fields.get("Task") or "",
        description=fields.get("Notes") or "",
        status=fields.get("Status") or TaskStatus.TODO,
        due_date=parse_datetime(fields.get("To Do Date") or fallback_due),
        completed_date=parse_datetime(completed) if completed else None,
        importance=fields.get("Importance") or TaskImportance.NORMAL,
        images=[photo["url"] for photo in fields.get("Photos") or [] if photo.get("url")],
        is_repeating=bool(fields.get("Repeated Task")),
        repeat_every_days=fields.get("Repeat Every X Days") or None,
    )


def changes_to_fields(changes: dict[str, Any]) -> dict[str, Any]:
    """Map task attributes onto Airtable columns; unknown attributes are skipped."""
    fields: dict[str, Any] = {}
    for name, value in changes.items():
        column = FIELD_MAP.get(name)
        if column is None:
            continue
        if name in ("due_date", "completed_date"):
            value = _airtable_date(value) if value is not None else None
        elif name == "images":
            value = [{"url": url} for url in value]
        elif name in ("status", "importance"):
            value = value.value
        fields[column] = value
    return fields


def record_to_observation(record: dict[str, Any], fallback_date: datetime) -> Observation:
    """Map an Airtable record onto an ``Observation``; the type is not stored remotely."""
    fields = record.get("fields", {})
    return Observation(
        id=record["id"],
        title=fields.get("Observation") or "",
        description=fields.get("Notes") or "",
        observer=fields.get("Who Observed") or None,
        related_tasks=fields.get("Related Tasks") or [],
        date=parse_datetime(fields.get("Date") or fallback_date),
        photos=[photo["url"] for photo in fields.get("Photos") or [] if photo.get("url")],
    )


def observation_to_fields(observation: Observation | ObservationCreate) -> dict[str, Any]:
    return {
        "Observation": observation.title,
        "Notes": observation.description,
        "Who Observed": observation.observer or "",
        "Date": _airtable_date(observation.date),
        "Photos": [{"url": url} for url in observation.photos],
        "Related Tasks": list(observation.related_tasks),
    }


def record_to_fuel_operation(record: dict[str, Any], fallback_date: datetime) -> FuelOperation:
    fields = record.get("fields", {})
    return FuelOperation(
        id=record["id"],
        type=fields.get("Operation"),
        amount=fields.get("How Much in Leters"),
        date=parse_datetime(fields.get("When") or fallback_date),
        fuel_type=fields.get("Fuel Type"),
        operator=fields.get("Who?") or "",
        notes=fields.get("Notes") or "",
    )


def fuel_operation_to_fields(operation: FuelOperationCreate) -> dict[str, Any]:
    return {
        "Operation": operation.type.value,
        "How Much in Leters": operation.amount,
        "When": _airtable_date(operation.date),
        "Fuel Type": operation.fuel_type.value,
        "Who?": operation.operator,
        "Notes": operation.notes,
    }


# =============================================================================
# HTTP
# =============================================================================

class AirtableTable:
    """HTTP access to one Airtable table."""

    def __init__(
        self,
        token: str,
        base_id: str,
        table: str,
        *,
        api_url: str = "https://api.airtable.com/v0",
        page_size: int = 25,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if not (token and base_id and table):
            raise ConfigurationError("Airtable configuration is missing")
        self.page_size = page_size
        self._clock = clock
        self._table_url = f"{api_url.rstrip('/')}/{base_id}/{table}"
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    @classmethod
    def _from_settings(
        cls, settings: Settings, table_setting: str, client: Optional[httpx.AsyncClient],
    ):
        settings.require_airtable(table_setting)
        return cls(
            settings.AIRTABLE_TOKEN,
            settings.AIRTABLE_BASE,
            getattr(settings, table_setting),
            api_url=settings.AIRTABLE_API_URL,
            page_size=settings.AIRTABLE_PAGE_SIZE,
            timeout=settings.REMOTE_TIMEOUT_SECONDS,
            client=client,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def _list_params(
        self,
        sort: Iterable[tuple[str, str]],
        fields: Iterable[str],
        cursor: Optional[str] = None,
        formula: Optional[str] = None,
    ) -> list[tuple[str, Any]]:
        params: list[tuple[str, Any]] = [("pageSize", self.page_size)]
        for index, (field, direction) in enumerate(sort):
            params.append((f"sort[{index}][field]", field))
            params.append((f"sort[{index}][direction]", direction))
        for column in fields:
            params.append(("fields[]", column))
        if formula:
            params.append(("filterByFormula", formula))
        if cursor:
            params.append(("offset", cursor))
        return params

    async def _create_record(self, fields: dict[str, Any]) -> str:
        data = await self._request(
            "POST", self._table_url, json={"fields": fields, "typecast": True},
        )
        logger.info("Created Airtable record %s", data["id"])
        return data["id"]

    async def _update_record(self, record_id: str, fields: dict[str, Any]) -> None:
        await self._request(
            "PATCH", f"{self._table_url}/{record_id}", json={"fields": fields, "typecast": True},
        )

    async def _delete_record(self, record_id: str) -> None:
        await self._request("DELETE", f"{self._table_url}/{record_id}")

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(method, url, headers=self._headers, **kwargs)
        except httpx.TimeoutException as exc:
            raise ConnectivityError(
                f"Airtable {method} timed out", code=ErrorCodes.TIMEOUT,
            ) from exc
        except httpx.TransportError as exc:
            raise ConnectivityError(f"Airtable unreachable: {exc}") from exc

        if response.status_code >= 400:
            message = _error_message(response)
            logger.error(
                "Airtable %s %s returned status %d: %s",
                method,
                url,
                response.status_code,
                message,
            )
            raise remote_error_for_status(response.status_code, message)
        return response.json() if response.content else {}


def _error_message(response: httpx.Response) -> str:
    try:
        error = response.json().get("error")
    except ValueError:
        return response.text[:200]
    if isinstance(error, dict):
        return error.get("message") or error.get("type") or ""
    return str(error or "")


# =============================================================================
# Repositories
# =============================================================================

class AirtableTaskRepository(AirtableTable):
    """Remote task store backed by one Airtable table."""

    @classmethod
    def from_settings(
        cls, settings: Settings, client: Optional[httpx.AsyncClient] = None,
    ) -> "AirtableTaskRepository":
        return cls._from_settings(settings, "AIRTABLE_TABLE", client)

    async def list(self, filter_key: FilterKey, cursor: Optional[str] = None) -> TaskPage:
        now = self._clock()
        params = self._list_params(
            SORT, FIELD_MAP.values(), cursor, filter_formula(filter_key, now.date()),
        )
        data = await self._request("GET", self._table_url, params=params)
        tasks = [record_to_task(record, now) for record in data.get("records", [])]
        next_cursor = data.get("offset")
        return TaskPage(tasks=tasks, next_cursor=next_cursor, has_more=bool(next_cursor))

    async def create(self, task: TaskCreate) -> str:
        fields = changes_to_fields(task.model_dump(exclude={"assignee_id"}))
        if task.completed_date is None:
            fields.pop("Completed Date", None)
        return await self._create_record(fields)

    async def update(self, task_id: str, patch: TaskPatch) -> None:
        fields = changes_to_fields(patch.changes())
        if fields:
            await self._update_record(task_id, fields)

    async def delete(self, task_id: str) -> None:
        await self._delete_record(task_id)


class AirtableObservationRepository(AirtableTable):
    """Observations table, newest first."""

    @classmethod
    def from_settings(
        cls, settings: Settings, client: Optional[httpx.AsyncClient] = None,
    ) -> "AirtableObservationRepository":
        return cls._from_settings(settings, "AIRTABLE_OBSERVATIONS_TABLE", client)

    async def list(self, cursor: Optional[str] = None) -> ObservationPage:
        now = self._clock()
        params = self._list_params(OBSERVATION_SORT, OBSERVATION_FIELDS, cursor)
        data = await self._request("GET", self._table_url, params=params)
        next_cursor = data.get("offset")
        return ObservationPage(
            observations=[record_to_observation(r, now) for r in data.get("records", [])],
            next_cursor=next_cursor,
            has_more=bool(next_cursor),
        )

    async def create(self, observation: ObservationCreate) -> str:
        return await self._create_record(observation_to_fields(observation))

    async def update(self, observation: Observation) -> None:
        """Write the whole observation back."""
        await self._update_record(observation.id, observation_to_fields(observation))

    async def delete(self, observation_id: str) -> None:
        await self._delete_record(observation_id)


class AirtableFuelRepository(AirtableTable):
    """Fuel ledger table, newest first.  Entries are append-only."""

    @classmethod
    def from_settings(
        cls, settings: Settings, client: Optional[httpx.AsyncClient] = None,
    ) -> "AirtableFuelRepository":
        return cls._from_settings(settings, "AIRTABLE_FUEL_TABLE", client)

    async def list(self, cursor: Optional[str] = None) -> FuelPage:
        now = self._clock()
        params = self._list_params(FUEL_SORT, FUEL_FIELDS, cursor)
        data = await self._request("GET", self._table_url, params=params)
        next_cursor = data.get("offset")
        return FuelPage(
            operations=[record_to_fuel_operation(r, now) for r in data.get("records", [])],
            next_cursor=next_cursor,
            has_more=bool(next_cursor),
        )

    async def create(self, operation: FuelOperationCreate) -> str:
        return await self._create_record(fuel_operation_to_fields(operation))
