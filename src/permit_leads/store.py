from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence


PROJECT_COLUMNS = (
    "permit_number",
    "permit_type",
    "status",
    "pipeline_stage",
    "pipeline_substage",
    "financing_type",
    "address",
    "description",
    "valuation",
    "units",
    "stories",
    "sqft",
    "zone_code",
    "apn",
    "latitude",
    "longitude",
    "permit_date",
    "issue_date",
    "contractor",
    "owner_name",
    "owner_address",
    "developer_id",
    "source",
    "raw_data",
    "assessor_use_type",
    "assessor_year_built",
    "assessor_sqft_main",
    "assessor_sqft_lot",
    "assessor_bedrooms",
    "assessor_bathrooms",
    "assessor_land_value",
    "assessor_imp_value",
    "assessor_exemption",
    "assessor_legal_desc",
    "assessor_enriched_at",
)

DEVELOPER_COLUMNS = (
    "name",
    "normalized_name",
    "company",
    "email",
    "phone",
    "website",
    "linkedin_url",
    "address",
    "entity_type",
    "sos_entity_number",
    "sos_status",
    "sos_registration_date",
    "sos_agent_name",
    "sos_agent_address",
    "contact_enriched_at",
    "notes",
    "pipeline_stage",
    "lead_score",
    "lead_score_data",
    "lead_score_at",
)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def _parse_utc(value: Optional[str]) -> Optional[datetime]:
    raw = (value or "").strip()
    if not raw:
        return None
    try:
        dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def _check_columns(fields: Dict[str, Any], allowed: Sequence[str]) -> None:
    unknown = set(fields) - set(allowed)
    if unknown:
        raise ValueError(f"Unknown columns: {sorted(unknown)}")


@dataclass(frozen=True)
class PassLock:
    """Outcome of one attempt to take the pipeline pass lock."""

    name: str
    acquired: bool
    holder_pid: Optional[int]
    heartbeat_at: Optional[str]
    previous_pid: Optional[int] = None

    @property
    def stolen(self) -> bool:
        return self.acquired and self.previous_pid is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "acquired": self.acquired,
            "stolen": self.stolen,
            "held_by_pid": self.holder_pid,
            "heartbeat_at": self.heartbeat_at,
            "previous_pid": self.previous_pid,
        }


class PipelineStore:
    """SQLite persistence for projects, developers, outreach and run history.

    The connection runs in autocommit mode; multi-statement units of work go
    through ``transaction()``.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(self.path), isolation_level=None)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._init_schema()

    def _init_schema(self) -> None:
        self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS developers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                normalized_name TEXT NOT NULL DEFAULT '',
                company TEXT,
                email TEXT,
                phone TEXT,
                website TEXT,
                linkedin_url TEXT,
                address TEXT,
                entity_type TEXT,
                sos_entity_number TEXT,
                sos_status TEXT,
                sos_registration_date TEXT,
                sos_agent_name TEXT,
                sos_agent_address TEXT,
                contact_enriched_at TEXT,
                notes TEXT,
                pipeline_stage TEXT NOT NULL DEFAULT 'new',
                lead_score INTEGER,
                lead_score_data TEXT,
                lead_score_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_developers_normalized_name
                ON developers(normalized_name);

            CREATE TABLE IF NOT EXISTS projects (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                permit_number TEXT NOT NULL UNIQUE,
                permit_type TEXT,
                status TEXT,
                pipeline_stage TEXT NOT NULL DEFAULT 'entitlement',
                pipeline_substage TEXT,
                financing_type TEXT NOT NULL DEFAULT 'predevelopment',
                address TEXT,
                description TEXT,
                valuation REAL,
                units INTEGER,
                stories INTEGER,
                sqft REAL,
                zone_code TEXT,
                apn TEXT,
                latitude REAL,
                longitude REAL,
                permit_date TEXT,
                issue_date TEXT,
                contractor TEXT,
                owner_name TEXT,
                owner_address TEXT,
                developer_id INTEGER REFERENCES developers(id),
                source TEXT,
                raw_data TEXT,
                assessor_use_type TEXT,
                assessor_year_built TEXT,
                assessor_sqft_main REAL,
                assessor_sqft_lot REAL,
                assessor_bedrooms INTEGER,
                assessor_bathrooms REAL,
                assessor_land_value REAL,
                assessor_imp_value REAL,
                assessor_exemption TEXT,
                assessor_legal_desc TEXT,
                assessor_enriched_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_projects_developer ON projects(developer_id);
            CREATE INDEX IF NOT EXISTS idx_projects_stage ON projects(pipeline_stage);

            CREATE TABLE IF NOT EXISTS developer_tags (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                developer_id INTEGER NOT NULL REFERENCES developers(id),
                tag TEXT NOT NULL,
                UNIQUE(developer_id, tag)
            );

            CREATE TABLE IF NOT EXISTS outreach_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                developer_id INTEGER NOT NULL REFERENCES developers(id),
                project_id INTEGER REFERENCES projects(id),
                type TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'logged',
                subject TEXT,
                notes TEXT,
                sent_at TEXT,
                created_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_outreach_developer_created
                ON outreach_logs(developer_id, created_at);

            CREATE TABLE IF NOT EXISTS scrape_runs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                source TEXT NOT NULL,
                status TEXT NOT NULL,
                records_found INTEGER NOT NULL DEFAULT 0,
                records_new INTEGER NOT NULL DEFAULT 0,
                records_updated INTEGER NOT NULL DEFAULT 0,
                error_message TEXT,
                started_at TEXT NOT NULL,
                completed_at TEXT
            );

            CREATE TABLE IF NOT EXISTS pass_locks (
                lock_name TEXT PRIMARY KEY,
                pid INTEGER NOT NULL,
                acquired_at TEXT NOT NULL,
                heartbeat_at TEXT NOT NULL
            );
            """
        )

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """All-or-nothing unit of work. Nested calls join the outer one."""

        if self.conn.in_transaction:
            yield self.conn
            return
        self.conn.execute("BEGIN IMMEDIATE")
        try:
            yield self.conn
        except BaseException:
            self.conn.rollback()
            raise
        else:
            self.conn.commit()

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    # Projects

    def get_project(self, project_id: int) -> Optional[Dict[str, Any]]:
        row = self.conn.execute("SELECT * FROM projects WHERE id=?", (int(project_id),)).fetchone()
        return dict(row) if row else None

    def get_project_by_permit(self, permit_number: str) -> Optional[Dict[str, Any]]:
        row = self.conn.execute(
            "SELECT * FROM projects WHERE permit_number=? LIMIT 1", (permit_number,)
        ).fetchone()
        return dict(row) if row else None

    def insert_project(self, fields: Dict[str, Any], *, now_iso: Optional[str] = None) -> int:
        _check_columns(fields, PROJECT_COLUMNS)
        now = now_iso or utc_now_iso()
        cols = list(fields.keys()) + ["created_at", "updated_at"]
        values = list(fields.values()) + [now, now]
        cur = self.conn.execute(
            f"INSERT INTO projects ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})",
            values,
        )
        return int(cur.lastrowid)

    def update_project(self, project_id: int, fields: Dict[str, Any], *, now_iso: Optional[str] = None) -> bool:
        if not fields:
            return False
        _check_columns(fields, PROJECT_COLUMNS)
        assignments = ", ".join(f"{c}=?" for c in fields) + ", updated_at=?"
        cur = self.conn.execute(
            f"UPDATE projects SET {assignments} WHERE id=?",
            (*fields.values(), now_iso or utc_now_iso(), int(project_id)),
        )
        return bool(cur.rowcount)

    def count_projects(self) -> int:
        return int(self.conn.execute("SELECT COUNT(*) FROM projects").fetchone()[0])

    def list_unlinked_projects(self) -> List[Dict[str, Any]]:
        rows = self.conn.execute(
            """
            SELECT id, permit_number, owner_name, owner_address
            FROM projects
            WHERE developer_id IS NULL AND owner_name IS NOT NULL AND trim(owner_name) != ''
            ORDER BY id
            """
        ).fetchall()
        return [dict(r) for r in rows]

    def link_project(self, project_id: int, developer_id: Optional[int]) -> bool:
        cur = self.conn.execute(
            "UPDATE projects SET developer_id=?, updated_at=? WHERE id=?",
            (developer_id, utc_now_iso(), int(project_id)),
        )
        return bool(cur.rowcount)

    def list_projects_for_developer(self, developer_id: int) -> List[Dict[str, Any]]:
        rows = self.conn.execute(
            "SELECT * FROM projects WHERE developer_id=? ORDER BY id", (int(developer_id),)
        ).fetchall()
        return [dict(r) for r in rows]

    def reassign_projects(self, from_developer_id: int, to_developer_id: int) -> int:
        cur = self.conn.execute(
            "UPDATE projects SET developer_id=?, updated_at=? WHERE developer_id=?",
            (int(to_developer_id), utc_now_iso(), int(from_developer_id)),
        )
        return int(cur.rowcount or 0)

    def list_projects_for_assessor(self) -> List[Dict[str, Any]]:
        rows = self.conn.execute(
            """
            SELECT id, apn FROM projects
            WHERE apn IS NOT NULL AND assessor_enriched_at IS NULL
            ORDER BY id
            """
        ).fetchall()
        return [dict(r) for r in rows]

    # Developers

    def get_developer(self, developer_id: int) -> Optional[Dict[str, Any]]:
        row = self.conn.execute("SELECT * FROM developers WHERE id=?", (int(developer_id),)).fetchone()
        return dict(row) if row else None

    def find_developer_by_normalized_name(self, normalized_name: str) -> Optional[Dict[str, Any]]:
        if not normalized_name:
            return None
        row = self.conn.execute(
            "SELECT * FROM developers WHERE normalized_name=? ORDER BY id LIMIT 1",
            (normalized_name,),
        ).fetchone()
        return dict(row) if row else None

    def insert_developer(self, fields: Dict[str, Any], *, now_iso: Optional[str] = None) -> int:
        _check_columns(fields, DEVELOPER_COLUMNS)
        if not fields.get("name"):
            raise ValueError("Developer name is required")
        now = now_iso or utc_now_iso()
        cols = list(fields.keys()) + ["created_at", "updated_at"]
        values = list(fields.values()) + [now, now]
        cur = self.conn.execute(
            f"INSERT INTO developers ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})",
            values,
        )
        return int(cur.lastrowid)

    def update_developer(self, developer_id: int, fields: Dict[str, Any], *, now_iso: Optional[str] = None) -> bool:
        if not fields:
            return False
        _check_columns(fields, DEVELOPER_COLUMNS)
        assignments = ", ".join(f"{c}=?" for c in fields) + ", updated_at=?"
        cur = self.conn.execute(
            f"UPDATE developers SET {assignments} WHERE id=?",
            (*fields.values(), now_iso or utc_now_iso(), int(developer_id)),
        )
        return bool(cur.rowcount)

    def delete_developer(self, developer_id: int) -> bool:
        cur = self.conn.execute("DELETE FROM developers WHERE id=?", (int(developer_id),))
        return bool(cur.rowcount)

    def count_developers(self) -> int:
        return int(self.conn.execute("SELECT COUNT(*) FROM developers").fetchone()[0])

    def list_developers_with_counts(self) -> List[Dict[str, Any]]:
        rows = self.conn.execute(
            """
            SELECT d.*,
                (SELECT COUNT(*) FROM projects p WHERE p.developer_id = d.id) AS project_count,
                (SELECT COUNT(*) FROM outreach_logs o WHERE o.developer_id = d.id) AS outreach_count
            FROM developers d
            ORDER BY d.name COLLATE NOCASE, d.id
            """
        ).fetchall()
        return [dict(r) for r in rows]

    def list_developer_ids_with_projects(self) -> List[int]:
        rows = self.conn.execute(
            "SELECT DISTINCT developer_id FROM projects WHERE developer_id IS NOT NULL ORDER BY developer_id"
        ).fetchall()
        return [int(r[0]) for r in rows]

    def clear_scores_without_projects(self) -> int:
        cur = self.conn.execute(
            """
            UPDATE developers
            SET lead_score=NULL, lead_score_data=NULL, lead_score_at=NULL
            WHERE lead_score IS NOT NULL
              AND NOT EXISTS (SELECT 1 FROM projects p WHERE p.developer_id = developers.id)
            """
        )
        return int(cur.rowcount or 0)

    def list_developers_for_sos(self) -> List[Dict[str, Any]]:
        rows = self.conn.execute(
            """
            SELECT id, name, entity_type FROM developers
            WHERE contact_enriched_at IS NULL AND sos_entity_number IS NULL
            ORDER BY id
            """
        ).fetchall()
        return [dict(r) for r in rows]

    # Tags

    def add_tag(self, developer_id: int, tag: str) -> bool:
        cur = self.conn.execute(
            "INSERT OR IGNORE INTO developer_tags (developer_id, tag) VALUES (?, ?)",
            (int(developer_id), tag),
        )
        return bool(cur.rowcount)

    def list_tags(self, developer_id: int) -> List[str]:
        rows = self.conn.execute(
            "SELECT tag FROM developer_tags WHERE developer_id=? ORDER BY tag", (int(developer_id),)
        ).fetchall()
        return [str(r[0]) for r in rows]

    def delete_tags(self, developer_id: int) -> int:
        cur = self.conn.execute("DELETE FROM developer_tags WHERE developer_id=?", (int(developer_id),))
        return int(cur.rowcount or 0)

    # Outreach (written by the outreach collaborator; the core only reads and re-points)

    def insert_outreach(
        self,
        *,
        developer_id: int,
        type: str,
        status: str = "logged",
        project_id: Optional[int] = None,
        subject: Optional[str] = None,
        notes: Optional[str] = None,
        sent_at: Optional[str] = None,
        created_at: Optional[str] = None,
    ) -> int:
        cur = self.conn.execute(
            """
            INSERT INTO outreach_logs (developer_id, project_id, type, status, subject, notes, sent_at, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                int(developer_id),
                project_id,
                type,
                status,
                subject,
                notes,
                sent_at,
                created_at or utc_now_iso(),
            ),
        )
        return int(cur.lastrowid)

    def list_recent_outreach(self, developer_id: int, *, limit: int = 5) -> List[Dict[str, Any]]:
        rows = self.conn.execute(
            """
            SELECT id, type, status, created_at, sent_at FROM outreach_logs
            WHERE developer_id=?
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            (int(developer_id), int(limit)),
        ).fetchall()
        return [dict(r) for r in rows]

    def reassign_outreach(self, from_developer_id: int, to_developer_id: int) -> int:
        cur = self.conn.execute(
            "UPDATE outreach_logs SET developer_id=? WHERE developer_id=?",
            (int(to_developer_id), int(from_developer_id)),
        )
        return int(cur.rowcount or 0)

    def list_outreach_for_developer(self, developer_id: int) -> List[Dict[str, Any]]:
        rows = self.conn.execute(
            "SELECT * FROM outreach_logs WHERE developer_id=? ORDER BY id", (int(developer_id),)
        ).fetchall()
        return [dict(r) for r in rows]

    # Run history

    def record_run_start(self, source: str, *, started_at: Optional[str] = None) -> int:
        cur = self.conn.execute(
            "INSERT INTO scrape_runs (source, status, started_at) VALUES (?, 'running', ?)",
            (source, started_at or utc_now_iso()),
        )
        return int(cur.lastrowid)

    def record_run_finish(
        self,
        run_id: int,
        *,
        status: str,
        records_found: int = 0,
        records_new: int = 0,
        records_updated: int = 0,
        error_message: Optional[str] = None,
        completed_at: Optional[str] = None,
    ) -> None:
        self.conn.execute(
            """
            UPDATE scrape_runs
            SET status=?, records_found=?, records_new=?, records_updated=?,
                error_message=?, completed_at=?
            WHERE id=?
            """,
            (
                status,
                int(records_found),
                int(records_new),
                int(records_updated),
                error_message,
                completed_at or utc_now_iso(),
                int(run_id),
            ),
        )

    def get_run(self, run_id: int) -> Optional[Dict[str, Any]]:
        row = self.conn.execute("SELECT * FROM scrape_runs WHERE id=?", (int(run_id),)).fetchone()
        return dict(row) if row else None

    def list_runs(self, *, source: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        if source:
            rows = self.conn.execute(
                "SELECT * FROM scrape_runs WHERE source=? ORDER BY id DESC LIMIT ?",
                (source, int(limit)),
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM scrape_runs ORDER BY id DESC LIMIT ?", (int(limit),)
            ).fetchall()
        return [dict(r) for r in rows]

    # Pass lock

    def acquire_pass_lock(
        self,
        name: str,
        *,
        ttl_seconds: int = 7200,
        pid: Optional[int] = None,
        now_iso: Optional[str] = None,
    ) -> PassLock:
        """Take the single-writer lock for one pipeline pass.

        A holder that has not heartbeated within ``ttl_seconds`` (or whose
        heartbeat cannot be read) is presumed dead and replaced.
        """

        now = _parse_utc(now_iso) if now_iso else datetime.now(timezone.utc)
        if now is None:
            raise ValueError(f"Bad lock timestamp: {now_iso!r}")
        stamp = now.isoformat()
        me = os.getpid() if pid is None else int(pid)

        with self.transaction():
            row = self.conn.execute(
                "SELECT pid, heartbeat_at FROM pass_locks WHERE lock_name=?", (name,)
            ).fetchone()
            if row is None:
                self.conn.execute(
                    "INSERT INTO pass_locks (lock_name, pid, acquired_at, heartbeat_at) VALUES (?, ?, ?, ?)",
                    (name, me, stamp, stamp),
                )
                return PassLock(name=name, acquired=True, holder_pid=me, heartbeat_at=stamp)

            last = _parse_utc(row["heartbeat_at"])
            if last is not None and now - last <= timedelta(seconds=ttl_seconds):
                return PassLock(
                    name=name,
                    acquired=False,
                    holder_pid=int(row["pid"]),
                    heartbeat_at=row["heartbeat_at"],
                )
            self.conn.execute(
                "UPDATE pass_locks SET pid=?, acquired_at=?, heartbeat_at=? WHERE lock_name=?",
                (me, stamp, stamp, name),
            )
            return PassLock(
                name=name,
                acquired=True,
                holder_pid=me,
                heartbeat_at=stamp,
                previous_pid=int(row["pid"]),
            )

    def heartbeat_pass_lock(self, name: str, *, pid: Optional[int] = None, now_iso: Optional[str] = None) -> bool:
        """Refresh the holder's heartbeat. False means the lock is no longer ours."""

        cur = self.conn.execute(
            "UPDATE pass_locks SET heartbeat_at=? WHERE lock_name=? AND pid=?",
            (now_iso or utc_now_iso(), name, os.getpid() if pid is None else int(pid)),
        )
        return bool(cur.rowcount)

    def release_pass_lock(self, name: str, *, pid: Optional[int] = None) -> bool:
        cur = self.conn.execute(
            "DELETE FROM pass_locks WHERE lock_name=? AND pid=?",
            (name, os.getpid() if pid is None else int(pid)),
        )
        return bool(cur.rowcount)
