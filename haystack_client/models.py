"""Data models for the Haystack client."""

from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Optional, Union

Record = dict[str, Any]
IdLike = Union[str, dict[str, Any]]


def ref_value(value: IdLike) -> str:
    """Return the identifier held by a plain string or a ref dict.

    Refs may arrive as ``"@foo"``, ``"foo"`` or ``{"_kind": "ref", "val": "foo"}``.
    """
    if isinstance(value, dict):
        value = value.get("val", "")
    if not isinstance(value, str) or not value:
        raise ValueError(f"Invalid record id: {value!r}")
    return value[1:] if value.startswith("@") else value


def to_ids(ids: Union[IdLike, Iterable[IdLike]]) -> list[str]:
    """Normalize ids into an ordered, duplicate-free list."""
    if isinstance(ids, (str, dict)):
        ids = [ids]
    return list(dict.fromkeys(ref_value(i) for i in ids))


def record_id(record: Record) -> str:
    """Identifier of a record."""
    if "id" not in record:
        raise ValueError("Record has no id")
    return ref_value(record["id"])


def is_removed(record: Record) -> bool:
    """True when a watch poll reports the record as removed."""
    return bool(record.get("removed"))


def _number(value: Any) -> Optional[float]:
    if isinstance(value, dict):
        value = value.get("val")
    if value is None:
        return None
    return float(value)


@dataclass
class Grid:
    """Rows of records with grid level meta data.

    Attributes:
        rows: The records, in server order.
        meta: Grid meta (e.g., ``watchId``, ``count``).
    """
    rows: list[Record] = field(default_factory=list)
    meta: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "Grid":
        """Parse from API response. A bare list is read as rows."""
        if data is None:
            return cls()
        if isinstance(data, list):
            return cls(rows=[dict(r) for r in data])
        return cls(
            rows=[dict(r) for r in data.get("rows", [])],
            meta=dict(data.get("meta", {})),
        )

    @classmethod
    def from_records(cls, records: Union["Grid", Iterable[Record]]) -> "Grid":
        if isinstance(records, Grid):
            return records
        return cls(rows=[dict(r) for r in records])

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {"rows": self.rows}
        if self.meta:
            result["meta"] = self.meta
        return result

    def ids(self) -> list[str]:
        return [record_id(r) for r in self.rows if "id" in r]

    def get(self, id: IdLike) -> Optional[Record]:
        key = ref_value(id)
        for row in self.rows:
            if "id" in row and record_id(row) == key:
                return row
        return None

    def filter_ids(self, ids: Iterable[str]) -> "Grid":
        """Rows whose id is in ``ids``. Meta is kept."""
        wanted = set(ids)
        return Grid(
            rows=[r for r in self.rows if "id" in r and record_id(r) in wanted],
            meta=dict(self.meta),
        )

    def is_empty(self) -> bool:
        return not self.rows

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[Record]:
        return iter(self.rows)


@dataclass
class ReadOptions:
    """Result shaping options for record reads.

    Attributes:
        unique: Columns whose values must be unique in the result.
        sort: Columns to sort the result by.
        limit: Maximum number of records returned.
        columns: Columns to include in the result.
    """
    unique: Optional[list[str]] = None
    sort: Optional[list[str]] = None
    limit: Optional[int] = None
    columns: Optional[list[str]] = None

    def to_params(self) -> dict[str, str]:
        params: dict[str, str] = {}
        if self.unique:
            params["unique"] = "|".join(self.unique)
        if self.sort:
            params["sort"] = "|".join(self.sort)
        if self.limit is not None:
            params["limit"] = str(self.limit)
        if self.columns:
            params["columns"] = "|".join(self.columns)
        return params


@dataclass
class DuplicateOptions:
    """Options for duplicating a record."""
    count: int = 1
    include_children: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"count": self.count, "includeChildren": self.include_children}


@dataclass
class WatchOpenResult:
    """Response of opening a watch subscription.

    Attributes:
        watch_id: Server handle of the subscription.
        poll_rate: Poll rate in seconds requested by the server, if any.
        grid: Current records of the subscribed ids.
    """
    watch_id: str
    poll_rate: Optional[float] = None
    grid: Grid = field(default_factory=Grid)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WatchOpenResult":
        grid = Grid.from_dict(data)
        watch_id = grid.meta.get("watchId")
        if not watch_id:
            raise ValueError("watchSub response has no watchId")
        return cls(
            watch_id=ref_value(watch_id),
            poll_rate=_number(grid.meta.get("pollRate")),
            grid=grid,
        )


@dataclass
class WatchPollResult:
    """Response of polling a watch subscription."""
    grid: Grid = field(default_factory=Grid)
    poll_rate: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Any) -> "WatchPollResult":
        grid = Grid.from_dict(data)
        return cls(grid=grid, poll_rate=_number(grid.meta.get("pollRate")))
