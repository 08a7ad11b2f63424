# tests/conftest.py
"""Shared fakes for the storage and RPC layers.

FakePool / FakeConnection / FakeCursor mimic the slice of psycopg2 the store
uses and interpret its two statements against an in-memory table, so store
and loop tests exercise the real SQL text and parameters.

FakeSession stands in for ``requests.Session``: it records every POST and
answers from a queue of canned responses or exceptions.
"""

import json
import re
from typing import Any, Dict, List, Optional

import psycopg2
import pytest
import requests
from eth_abi import encode as abi_encode
from hypothesis import settings

from revert_indexer.variables import ERROR_SELECTOR

settings.register_profile("ci", max_examples=200, deadline=None)
settings.register_profile("debug", max_examples=10, deadline=None)
settings.load_profile("ci")

_UPDATE = re.compile(r"^UPDATE transactions SET (?P<assignments>.+) WHERE hash = %s$")


def error_payload(reason: str) -> bytes:
    """ABI-encoded Error(string) revert data, as a Solidity require() produces it."""
    return ERROR_SELECTOR + abi_encode(["string"], [reason])


# =============================================================================
# Storage fakes
# =============================================================================


class FakeTable:
    def __init__(self):
        self.rows: Dict[str, Dict[str, Any]] = {}
        self.statements: List[tuple] = []
        self.fail_selects = 0
        self.fail_updates = 0

    def insert(self, tx_hash: str, block: int = 1, status: int = 0, error=None, revert_reason=None):
        self.rows[tx_hash] = {"status": status, "block": block, "error": error, "revert_reason": revert_reason}

    def row(self, tx_hash: str) -> Dict[str, Any]:
        return self.rows[tx_hash]


class FakeCursor:
    def __init__(self, table: FakeTable):
        self.table = table
        self.rowcount = -1
        self._result: List[tuple] = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, query: str, params: list):
        self.table.statements.append((query, list(params)))
        if query.startswith("SELECT hash::varchar FROM transactions WHERE status = %s AND error IS NULL"):
            self._select(query, list(params))
            return
        match = _UPDATE.match(query)
        if match:
            self._update(match.group("assignments"), list(params))
            return
        raise AssertionError(f"unexpected statement: {query}")

    def _select(self, query, params):
        if self.table.fail_selects:
            self.table.fail_selects -= 1
            raise psycopg2.OperationalError("server closed the connection unexpectedly")
        status, limit = params[0], params[-1]
        low = high = None
        if "BETWEEN" in query:
            low, high = params[1], params[2]
        hashes = [
            txh
            for txh, row in self.table.rows.items()
            if row["status"] == status
            and row["error"] is None
            and (low is None or low <= row["block"] <= high)
        ]
        self._result = [(txh,) for txh in hashes[:limit]]

    def _update(self, assignments, params):
        if self.table.fail_updates:
            self.table.fail_updates -= 1
            raise psycopg2.OperationalError("could not send data to server")
        columns = [part.split(" = ")[0] for part in assignments.split(", ")]
        tx_hash = params[-1]
        row = self.table.rows.get(tx_hash)
        self.rowcount = 0
        if row is not None:
            row.update(zip(columns, params[:-1]))
            self.rowcount = 1

    def fetchall(self):
        return self._result


class FakeConnection:
    def __init__(self, table: FakeTable):
        self.table = table
        self.commits = 0
        self.rollbacks = 0

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.commits += 1
        else:
            self.rollbacks += 1
        return False

    def cursor(self):
        return FakeCursor(self.table)


class FakePool:
    def __init__(self, table: FakeTable):
        self.table = table
        self.connection = FakeConnection(table)
        self.returned: List[bool] = []
        self.closed = False

    def getconn(self):
        return self.connection

    def putconn(self, conn, close=False):
        self.returned.append(close)

    def closeall(self):
        self.closed = True


# =============================================================================
# RPC fakes
# =============================================================================


class FakeResponse:
    """Streamed response; the body is served in ``chunk_size`` byte pieces."""

    def __init__(self, body: Any = None, status_code: int = 200, raw: Optional[str] = None, chunk_size: int = 0):
        self.status_code = status_code
        self.content = raw.encode("utf-8") if raw is not None else json.dumps(body).encode("utf-8")
        self.chunk_size = chunk_size
        self.closed = False

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error", response=self)

    def iter_content(self, chunk_size=1):
        size = self.chunk_size or chunk_size
        for start in range(0, len(self.content), size):
            yield self.content[start:start + size]

    def close(self):
        self.closed = True


class FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls: List[dict] = []
        self.closed = False

    def post(self, url, json=None, timeout=None, stream=False):
        self.calls.append({"url": url, "json": json, "timeout": timeout, "stream": stream})
        answer = self.responses.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer

    def close(self):
        self.closed = True


def rpc_result(result: Any) -> FakeResponse:
    return FakeResponse({"jsonrpc": "2.0", "id": 1, "result": result})


@pytest.fixture
def table() -> FakeTable:
    return FakeTable()


@pytest.fixture
def pool(table) -> FakePool:
    return FakePool(table)
