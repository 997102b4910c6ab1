"""Postgres-backed chat store. Each call runs on its own connection and commits."""

from __future__ import annotations

from typing import Any, Iterable, Sequence

import psycopg2
from psycopg2 import sql

from app.db import execute, execute_values, fetch_all, get_conn
from chat_store import NOT_FOUND_CODE, StoreError


_TABLES = {"chatrooms", "chatroom_members", "chatroom_roles"}


def _store_error(exc: psycopg2.Error) -> StoreError:
    diag = getattr(exc, "diag", None)
    return StoreError(
        code=exc.pgcode,
        message=(getattr(diag, "message_primary", None) or str(exc)).strip(),
        details=getattr(diag, "message_detail", None),
        hint=getattr(diag, "message_hint", None),
    )


def _table(name: str) -> sql.Identifier:
    if name not in _TABLES:
        raise StoreError("42P01", f'relation "public.{name}" does not exist')
    return sql.Identifier(name)


def _where(filters: dict) -> tuple[sql.Composable, list]:
    if not filters:
        return sql.SQL(""), []
    clauses = [sql.SQL("{} = %s").format(sql.Identifier(col)) for col in filters]
    return sql.SQL(" where ") + sql.SQL(" and ").join(clauses), list(filters.values())


def _columns(rows: list[dict]) -> list[str]:
    columns: list[str] = []
    for row in rows:
        for col in row:
            if col not in columns:
                columns.append(col)
    return columns


class DbChatStore:
    def select_one(self, table: str, filters: dict) -> dict | None:
        rows = self._select(table, filters, None, limit=2, query_name=f"{table}.select_one")
        if len(rows) > 1:
            raise StoreError(NOT_FOUND_CODE, "JSON object requested, multiple (or no) rows returned")
        return rows[0] if rows else None

    def select(self, table: str, filters: dict, columns: Sequence[str] | None = None) -> list[dict]:
        return self._select(table, filters, columns, limit=None, query_name=f"{table}.select")

    def _select(self, table: str, filters: dict, columns: Sequence[str] | None, limit: int | None, query_name: str) -> list[dict]:
        fields = sql.SQL(", ").join(sql.Identifier(c) for c in columns) if columns else sql.SQL("*")
        where, params = _where(filters)
        query = sql.SQL("select {} from {}").format(fields, _table(table)) + where
        if limit is not None:
            query = query + sql.SQL(" limit {}").format(sql.Literal(limit))
        try:
            with get_conn() as conn:
                return fetch_all(conn, query, params, query_name=query_name)
        except psycopg2.Error as exc:
            raise _store_error(exc) from exc

    def _write_rows(self, table: str, rows: Iterable[dict], suffix: sql.Composable, query_name: str) -> None:
        rows = list(rows)
        if not rows:
            return
        columns = _columns(rows)
        query = sql.SQL("insert into {} ({}) values %s").format(
            _table(table),
            sql.SQL(", ").join(sql.Identifier(c) for c in columns),
        ) + suffix
        values = [tuple(row.get(c) for c in columns) for row in rows]
        try:
            with get_conn() as conn:
                execute_values(conn, query.as_string(conn), values, query_name=query_name)
        except psycopg2.Error as exc:
            raise _store_error(exc) from exc

    def insert(self, table: str, rows: Iterable[dict]) -> None:
        self._write_rows(table, rows, sql.SQL(""), query_name=f"{table}.insert")

    def upsert(self, table: str, rows: Iterable[dict], on_conflict: Sequence[str]) -> None:
        rows = list(rows)
        updates = [c for c in _columns(rows) if c not in on_conflict]
        if updates:
            action = sql.SQL("do update set ") + sql.SQL(", ").join(
                sql.SQL("{0} = excluded.{0}").format(sql.Identifier(c)) for c in updates
            )
        else:
            action = sql.SQL("do nothing")
        suffix = sql.SQL(" on conflict ({}) ").format(
            sql.SQL(", ").join(sql.Identifier(c) for c in on_conflict)
        ) + action
        self._write_rows(table, rows, suffix, query_name=f"{table}.upsert")

    def delete(self, table: str, filters: dict) -> None:
        where, params = _where(filters)
        query = sql.SQL("delete from {}").format(_table(table)) + where
        try:
            with get_conn() as conn:
                execute(conn, query, params, query_name=f"{table}.delete")
        except psycopg2.Error as exc:
            raise _store_error(exc) from exc

    def rpc(self, name: str, params: dict) -> Any:
        args = sql.SQL(", ").join(
            sql.SQL("{} => %s").format(sql.Identifier(key)) for key in params
        )
        query = sql.SQL("select {}({}) as result").format(sql.Identifier(name), args)
        try:
            with get_conn() as conn:
                rows = fetch_all(conn, query, list(params.values()), query_name=f"rpc.{name}")
        except psycopg2.Error as exc:
            raise _store_error(exc) from exc
        result = rows[0].get("result") if rows else None
        return str(result) if result is not None and not isinstance(result, (str, dict, list)) else result
