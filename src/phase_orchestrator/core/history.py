"""Activity log of operations and transitions."""

import sqlite3
from dataclasses import dataclass
from datetime import datetime


@dataclass
class ProjectEvent:
    id: int | None = None
    project: str = ""
    action: str = ""
    detail: str | None = None
    from_state: str | None = None
    to_state: str | None = None
    created_at: datetime | None = None


def _parse_dt(val: str | None) -> datetime | None:
    if val is None:
        return None
    return datetime.fromisoformat(val)


def _row_to_event(row: sqlite3.Row) -> ProjectEvent:
    return ProjectEvent(
        id=row["id"],
        project=row["project"],
        action=row["action"],
        detail=row["detail"],
        from_state=row["from_state"],
        to_state=row["to_state"],
        created_at=_parse_dt(row["created_at"]),
    )


def record(
    db: sqlite3.Connection,
    project: str,
    action: str,
    detail: str | None = None,
    from_state: str | None = None,
    to_state: str | None = None,
) -> None:
    """Append an entry to the activity log."""
    db.execute(
        """INSERT INTO project_events (project, action, detail, from_state, to_state)
           VALUES (?, ?, ?, ?, ?)""",
        (project, action, detail, from_state, to_state),
    )
    db.commit()


def list_events(
    db: sqlite3.Connection,
    project: str | None = None,
    limit: int = 50,
) -> list[ProjectEvent]:
    """Most recent entries first."""
    query = "SELECT * FROM project_events"
    params: list = []
    if project:
        query += " WHERE project = ?"
        params.append(project)
    query += " ORDER BY id DESC LIMIT ?"
    params.append(limit)
    rows = db.execute(query, params).fetchall()
    return [_row_to_event(r) for r in rows]
