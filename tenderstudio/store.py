"""SQLite storage for tenders, BOQ items and markup configurations."""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from .boq import BOQItem, utc_now_iso
from .markup import (
    PERSISTED_DEFAULTS,
    MarkupParameters,
    canonical_overrides,
    parameters_from_mapping,
    validate_parameters,
)

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_PATH = Path.home() / ".tender_studio" / "tenders.sqlite"


class NotFoundError(LookupError):
    """Raised when a requested row does not exist."""


@dataclass
class Tender:
    tender_id: int
    title: str
    tender_number: Optional[str] = None
    commercial_total: Optional[float] = None
    commercial_total_at: Optional[str] = None
    created_at: Optional[str] = None


@dataclass
class MarkupConfiguration:
    """A tender-scoped set of markup percentages; at most one is active per tender."""

    config_id: int
    tender_id: int
    parameters: MarkupParameters
    notes: str = ""
    is_active: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class MarkupTemplate:
    """A named, reusable parameter set; at most one is the default."""

    template_id: int
    name: str
    parameters: MarkupParameters
    description: str = ""
    is_default: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


def _dump_parameters(params: MarkupParameters) -> str:
    return json.dumps(params.as_dict(), sort_keys=True)


def _load_parameters(raw: Optional[str]) -> MarkupParameters:
    values = json.loads(raw) if raw else {}
    return parameters_from_mapping(values, PERSISTED_DEFAULTS)


class TenderStore:
    """Store tender data in a SQLite database."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path else DEFAULT_DATABASE_PATH
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._initialized = False

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        self._ensure_schema()
        with self._lock:
            conn = self._connect()
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                conn.close()

    def _fetchall(self, query: str, params: Sequence[object] = ()) -> List[sqlite3.Row]:
        with self._transaction() as conn:
            return conn.execute(query, params).fetchall()

    def _fetchone(self, query: str, params: Sequence[object] = ()) -> Optional[sqlite3.Row]:
        rows = self._fetchall(query + " LIMIT 1", params)
        return rows[0] if rows else None

    def _ensure_schema(self) -> None:
        if self._initialized:
            return
        with self._lock:
            if self._initialized:
                return
            conn = self._connect()
            try:
                conn.executescript(
                    """
                    CREATE TABLE IF NOT EXISTS tenders (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        title TEXT NOT NULL,
                        tender_number TEXT,
                        commercial_total REAL,
                        commercial_total_at TEXT,
                        created_at TEXT NOT NULL
                    );

                    CREATE TABLE IF NOT EXISTS boq_items (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        tender_id INTEGER NOT NULL REFERENCES tenders(id) ON DELETE CASCADE,
                        position_id TEXT NOT NULL,
                        item_type TEXT NOT NULL,
                        description TEXT,
                        unit TEXT,
                        quantity REAL NOT NULL DEFAULT 0,
                        unit_rate REAL NOT NULL DEFAULT 0,
                        currency_rate REAL NOT NULL DEFAULT 1,
                        delivery_price_type TEXT NOT NULL DEFAULT 'included',
                        delivery_amount REAL NOT NULL DEFAULT 0,
                        is_auxiliary INTEGER NOT NULL DEFAULT 0,
                        sort_order INTEGER NOT NULL DEFAULT 0,
                        commercial_cost REAL,
                        commercial_coefficient REAL
                    );

                    CREATE TABLE IF NOT EXISTS markup_configurations (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        tender_id INTEGER NOT NULL REFERENCES tenders(id) ON DELETE CASCADE,
                        parameters TEXT NOT NULL,
                        notes TEXT,
                        is_active INTEGER NOT NULL DEFAULT 0,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    );

                    CREATE TABLE IF NOT EXISTS markup_templates (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT UNIQUE NOT NULL,
                        description TEXT,
                        parameters TEXT NOT NULL,
                        is_default INTEGER NOT NULL DEFAULT 0,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    );

                    CREATE INDEX IF NOT EXISTS idx_boq_items_tender
                        ON boq_items(tender_id, position_id, sort_order);
                    CREATE INDEX IF NOT EXISTS idx_markup_configurations_tender
                        ON markup_configurations(tender_id);
                    """
                )
                conn.commit()
            finally:
                conn.close()
            try:
                os.chmod(self.path, 0o600)
            except OSError:
                pass
            self._initialized = True

    # ------------ Tenders ------------
    def create_tender(self, title: str, tender_number: Optional[str] = None) -> Tender:
        if not title or not title.strip():
            raise ValueError("Tender title must not be empty")
        created_at = utc_now_iso()
        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO tenders (title, tender_number, created_at) VALUES (?, ?, ?)",
                (title.strip(), tender_number, created_at),
            )
            tender_id = int(cursor.lastrowid)
        logger.info("Created tender %s (%s)", tender_id, title)
        return Tender(tender_id=tender_id, title=title.strip(), tender_number=tender_number, created_at=created_at)

    def get_tender(self, tender_id: int) -> Tender:
        row = self._fetchone("SELECT * FROM tenders WHERE id = ?", (tender_id,))
        if row is None:
            raise NotFoundError(f"Tender {tender_id} does not exist")
        return _row_to_tender(row)

    def find_tender(self, title: str) -> Optional[Tender]:
        row = self._fetchone(
            "SELECT * FROM tenders WHERE title = ? ORDER BY id DESC", (title.strip(),)
        )
        return _row_to_tender(row) if row is not None else None

    def list_tenders(self) -> List[Tender]:
        rows = self._fetchall("SELECT * FROM tenders ORDER BY title, id")
        return [_row_to_tender(row) for row in rows]

    def update_commercial_total(self, tender_id: int, total: float) -> str:
        """Cache the computed commercial total of a tender and return its timestamp."""

        computed_at = utc_now_iso()
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE tenders SET commercial_total = ?, commercial_total_at = ? WHERE id = ?",
                (total, computed_at, tender_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Tender {tender_id} does not exist")
        return computed_at

    # ------------ BOQ items ------------
    def add_items(self, tender_id: int, items: Iterable[BOQItem]) -> List[BOQItem]:
        self.get_tender(tender_id)
        stored: List[BOQItem] = []
        with self._transaction() as conn:
            for item in items:
                cursor = conn.execute(
                    """
                    INSERT INTO boq_items (
                        tender_id, position_id, item_type, description, unit,
                        quantity, unit_rate, currency_rate, delivery_price_type,
                        delivery_amount, is_auxiliary, sort_order
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        tender_id,
                        item.position_id,
                        item.item_type.value,
                        item.description,
                        item.unit,
                        item.quantity,
                        item.unit_rate,
                        item.currency_rate,
                        item.delivery_price_type,
                        item.delivery_amount,
                        int(item.is_auxiliary),
                        item.sort_order,
                    ),
                )
                item.item_id = int(cursor.lastrowid)
                stored.append(item)
        logger.info("Stored %d BOQ items for tender %s", len(stored), tender_id)
        return stored

    def list_items(self, tender_id: int, position_id: Optional[str] = None) -> List[BOQItem]:
        query = "SELECT * FROM boq_items WHERE tender_id = ?"
        params: List[object] = [tender_id]
        if position_id is not None:
            query += " AND position_id = ?"
            params.append(position_id)
        query += " ORDER BY position_id, sort_order, id"
        rows = self._fetchall(query, params)
        return [_row_to_item(row) for row in rows]

    def save_item_costs(self, updates: Iterable[Tuple[int, float, float]]) -> int:
        """Persist ``(item_id, commercial_cost, coefficient)`` triples."""

        updated = 0
        with self._transaction() as conn:
            for item_id, commercial_cost, coefficient in updates:
                cursor = conn.execute(
                    "UPDATE boq_items SET commercial_cost = ?, commercial_coefficient = ? WHERE id = ?",
                    (commercial_cost, coefficient, item_id),
                )
                updated += cursor.rowcount
        return updated

    def delete_item(self, item_id: int) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM boq_items WHERE id = ?", (item_id,))
            deleted = cursor.rowcount
        return deleted > 0

    # ------------ Markup configurations ------------
    def create_configuration(
        self,
        tender_id: int,
        params: Optional[MarkupParameters] = None,
        *,
        notes: str = "",
        activate: bool = False,
    ) -> MarkupConfiguration:
        self.get_tender(tender_id)
        params = validate_parameters(params or PERSISTED_DEFAULTS)
        now = utc_now_iso()
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO markup_configurations (tender_id, parameters, notes, is_active, created_at, updated_at)
                VALUES (?, ?, ?, 0, ?, ?)
                """,
                (tender_id, _dump_parameters(params), notes, now, now),
            )
            config_id = int(cursor.lastrowid)
        logger.info("Created markup configuration %s for tender %s", config_id, tender_id)
        if activate:
            return self.activate_configuration(config_id, tender_id)
        return self.get_configuration(config_id)

    def get_configuration(self, config_id: int) -> MarkupConfiguration:
        row = self._fetchone("SELECT * FROM markup_configurations WHERE id = ?", (config_id,))
        if row is None:
            raise NotFoundError(f"Markup configuration {config_id} does not exist")
        return _row_to_configuration(row)

    def list_configurations(self, tender_id: int) -> List[MarkupConfiguration]:
        rows = self._fetchall(
            "SELECT * FROM markup_configurations WHERE tender_id = ? ORDER BY created_at DESC, id DESC",
            (tender_id,),
        )
        return [_row_to_configuration(row) for row in rows]

    def update_configuration(
        self,
        config_id: int,
        overrides: Optional[Mapping[str, Any]] = None,
        *,
        notes: Optional[str] = None,
    ) -> MarkupConfiguration:
        current = self.get_configuration(config_id)
        params = validate_parameters(current.parameters.with_overrides(canonical_overrides(overrides)))
        with self._transaction() as conn:
            conn.execute(
                "UPDATE markup_configurations SET parameters = ?, notes = ?, updated_at = ? WHERE id = ?",
                (
                    _dump_parameters(params),
                    current.notes if notes is None else notes,
                    utc_now_iso(),
                    config_id,
                ),
            )
        return self.get_configuration(config_id)

    def delete_configuration(self, config_id: int) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM markup_configurations WHERE id = ?", (config_id,))
            deleted = cursor.rowcount
        return deleted > 0

    def activate_configuration(self, config_id: int, tender_id: int) -> MarkupConfiguration:
        """Make ``config_id`` the only active configuration of ``tender_id``."""

        with self._transaction() as conn:
            target = conn.execute(
                "SELECT id FROM markup_configurations WHERE id = ? AND tender_id = ?",
                (config_id, tender_id),
            ).fetchone()
            if target is None:
                raise NotFoundError(
                    f"Markup configuration {config_id} does not belong to tender {tender_id}"
                )
            conn.execute(
                "UPDATE markup_configurations SET is_active = 0 WHERE tender_id = ? AND id != ?",
                (tender_id, config_id),
            )
            conn.execute(
                "UPDATE markup_configurations SET is_active = 1, updated_at = ? WHERE id = ?",
                (utc_now_iso(), config_id),
            )
        logger.info("Activated markup configuration %s for tender %s", config_id, tender_id)
        return self.get_configuration(config_id)

    def get_active_configuration(
        self, tender_id: int, *, create_default: bool = True
    ) -> Optional[MarkupConfiguration]:
        """Return the active configuration, seeding one from the persisted defaults if needed."""

        row = self._fetchone(
            "SELECT * FROM markup_configurations WHERE tender_id = ? AND is_active = 1",
            (tender_id,),
        )
        if row is not None:
            return _row_to_configuration(row)
        if not create_default:
            return None
        logger.info("No active markup configuration for tender %s; creating defaults", tender_id)
        return self.create_configuration(tender_id, PERSISTED_DEFAULTS, activate=True)

    # ------------ Markup templates ------------
    def create_template(
        self,
        name: str,
        params: Optional[MarkupParameters] = None,
        *,
        description: str = "",
        is_default: bool = False,
    ) -> MarkupTemplate:
        if not name or not name.strip():
            raise ValueError("Template name must not be empty")
        params = validate_parameters(params or PERSISTED_DEFAULTS)
        now = utc_now_iso()
        with self._transaction() as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO markup_templates (name, description, parameters, is_default, created_at, updated_at)
                    VALUES (?, ?, ?, 0, ?, ?)
                    """,
                    (name.strip(), description, _dump_parameters(params), now, now),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError(f"Template '{name}' already exists") from exc
            template_id = int(cursor.lastrowid)
        if is_default:
            return self.set_default_template(template_id)
        return self.get_template(template_id)

    def get_template(self, template_id: int) -> MarkupTemplate:
        row = self._fetchone("SELECT * FROM markup_templates WHERE id = ?", (template_id,))
        if row is None:
            raise NotFoundError(f"Markup template {template_id} does not exist")
        return _row_to_template(row)

    def find_template(self, name: str) -> Optional[MarkupTemplate]:
        row = self._fetchone("SELECT * FROM markup_templates WHERE name = ?", (name.strip(),))
        return _row_to_template(row) if row is not None else None

    def list_templates(self) -> List[MarkupTemplate]:
        rows = self._fetchall("SELECT * FROM markup_templates ORDER BY is_default DESC, name")
        return [_row_to_template(row) for row in rows]

    def update_template(
        self,
        template_id: int,
        overrides: Optional[Mapping[str, Any]] = None,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> MarkupTemplate:
        current = self.get_template(template_id)
        params = validate_parameters(current.parameters.with_overrides(canonical_overrides(overrides)))
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE markup_templates
                SET name = ?, description = ?, parameters = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    current.name if name is None else name.strip(),
                    current.description if description is None else description,
                    _dump_parameters(params),
                    utc_now_iso(),
                    template_id,
                ),
            )
        return self.get_template(template_id)

    def delete_template(self, template_id: int) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM markup_templates WHERE id = ?", (template_id,))
            deleted = cursor.rowcount
        return deleted > 0

    def set_default_template(self, template_id: int) -> MarkupTemplate:
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE markup_templates SET is_default = 1, updated_at = ? WHERE id = ?",
                (utc_now_iso(), template_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Markup template {template_id} does not exist")
            conn.execute("UPDATE markup_templates SET is_default = 0 WHERE id != ?", (template_id,))
        return self.get_template(template_id)

    def get_default_template(self) -> Optional[MarkupTemplate]:
        row = self._fetchone("SELECT * FROM markup_templates WHERE is_default = 1")
        return _row_to_template(row) if row is not None else None

    def apply_template_to_tender(self, template_id: int, tender_id: int) -> MarkupConfiguration:
        """Copy a template into a new tender configuration and activate it."""

        template = self.get_template(template_id)
        configuration = self.create_configuration(
            tender_id,
            template.parameters,
            notes=f"Template: {template.name}",
        )
        return self.activate_configuration(configuration.config_id, tender_id)

    def create_template_from_configuration(
        self, config_id: int, name: str, *, description: str = ""
    ) -> MarkupTemplate:
        configuration = self.get_configuration(config_id)
        return self.create_template(name, configuration.parameters, description=description)


def _row_to_tender(row: sqlite3.Row) -> Tender:
    return Tender(
        tender_id=int(row["id"]),
        title=row["title"],
        tender_number=row["tender_number"],
        commercial_total=row["commercial_total"],
        commercial_total_at=row["commercial_total_at"],
        created_at=row["created_at"],
    )


def _row_to_item(row: sqlite3.Row) -> BOQItem:
    data: Dict[str, Any] = dict(row)
    data["item_id"] = data.pop("id")
    data["is_auxiliary"] = bool(data.get("is_auxiliary"))
    return BOQItem.from_dict(data)


def _row_to_configuration(row: sqlite3.Row) -> MarkupConfiguration:
    return MarkupConfiguration(
        config_id=int(row["id"]),
        tender_id=int(row["tender_id"]),
        parameters=_load_parameters(row["parameters"]),
        notes=row["notes"] or "",
        is_active=bool(row["is_active"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_template(row: sqlite3.Row) -> MarkupTemplate:
    return MarkupTemplate(
        template_id=int(row["id"]),
        name=row["name"],
        parameters=_load_parameters(row["parameters"]),
        description=row["description"] or "",
        is_default=bool(row["is_default"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


__all__ = [
    "DEFAULT_DATABASE_PATH",
    "MarkupConfiguration",
    "MarkupTemplate",
    "NotFoundError",
    "Tender",
    "TenderStore",
]
