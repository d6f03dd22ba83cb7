"""Idempotent merge-upsert of a computed row set into a keyed table.

Matching keys are updated in place, missing keys are inserted, and target rows
absent from the source are left alone. One call is one transaction.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from loguru import logger
from sqlalchemy import Table, and_, bindparam, insert, select, tuple_, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from daily_rollup.errors import ComputationError, translate_store_error

KEY_LOOKUP_CHUNK = 500

Key = tuple[Any, ...]


@dataclass(frozen=True)
class MergeResult:
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0

    @property
    def rows_affected(self) -> int:
        return self.inserted + self.updated


def _as_columns(key: str | Sequence[str]) -> tuple[str, ...]:
    return (key,) if isinstance(key, str) else tuple(key)


def _collapse_by_key(
    rows: Iterable[Mapping[str, Any]], key_cols: tuple[str, ...], fields: tuple[str, ...]
) -> dict[Key, dict[str, Any]]:
    staged: dict[Key, dict[str, Any]] = {}
    for row in rows:
        missing = [c for c in fields if c not in row]
        if missing:
            raise ComputationError(f"source row is missing fields {missing}: {dict(row)}")
        k = tuple(row[c] for c in key_cols)
        # Later rows win; re-insert so the surviving row keeps its latest position.
        staged.pop(k, None)
        staged[k] = {c: row[c] for c in fields}
    return staged


class MergeEngine:
    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def merge(
        self,
        target: Table,
        source_rows: Iterable[Mapping[str, Any]],
        key: str | Sequence[str],
        update_fields: Sequence[str],
    ) -> MergeResult:
        key_cols = _as_columns(key)
        update_cols = tuple(c for c in update_fields if c not in key_cols)
        staged = _collapse_by_key(source_rows, key_cols, key_cols + update_cols)
        if not staged:
            logger.debug("merge into {}: empty source, nothing to do", target.name)
            return MergeResult()

        try:
            with self._engine.begin() as conn:
                result = self._apply(conn, target, staged, key_cols, update_cols)
        except SQLAlchemyError as exc:
            raise translate_store_error(exc) from exc

        logger.info(
            "merge into {}: inserted={} updated={} unchanged={}",
            target.name,
            result.inserted,
            result.updated,
            result.unchanged,
        )
        return result

    def _apply(
        self,
        conn: Connection,
        target: Table,
        staged: dict[Key, dict[str, Any]],
        key_cols: tuple[str, ...],
        update_cols: tuple[str, ...],
    ) -> MergeResult:
        existing = self._load_existing(conn, target, list(staged), key_cols, update_cols)

        inserts: list[dict[str, Any]] = []
        updates: list[dict[str, Any]] = []
        unchanged = 0
        for k, row in staged.items():
            current = existing.get(k)
            if current is None:
                inserts.append(row)
            elif any(current[c] != row[c] for c in update_cols):
                updates.append({f"b_{c}": v for c, v in row.items()})
            else:
                unchanged += 1

        if inserts:
            conn.execute(insert(target), inserts)
        if updates and update_cols:
            stmt = (
                update(target)
                .where(and_(*(target.c[c] == bindparam(f"b_{c}") for c in key_cols)))
                .values({c: bindparam(f"b_{c}") for c in update_cols})
            )
            conn.execute(stmt, updates)

        return MergeResult(inserted=len(inserts), updated=len(updates), unchanged=unchanged)

    def _load_existing(
        self,
        conn: Connection,
        target: Table,
        keys: list[Key],
        key_cols: tuple[str, ...],
        update_cols: tuple[str, ...],
    ) -> dict[Key, dict[str, Any]]:
        cols = [target.c[c] for c in key_cols + update_cols]
        out: dict[Key, dict[str, Any]] = {}
        for start in range(0, len(keys), KEY_LOOKUP_CHUNK):
            chunk = keys[start : start + KEY_LOOKUP_CHUNK]
            if len(key_cols) == 1:
                cond = target.c[key_cols[0]].in_([k[0] for k in chunk])
            else:
                cond = tuple_(*(target.c[c] for c in key_cols)).in_(chunk)
            for row in conn.execute(select(*cols).where(cond)).mappings():
                out[tuple(row[c] for c in key_cols)] = dict(row)
        return out
