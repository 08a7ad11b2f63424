"""
JSON-RPC client for ``debug_traceTransaction``.

One call per transaction; the response ``{"error": ..., "output": ...}`` is
folded into a ``TraceOutcome``:

    Success            result.error empty or absent
    Revert(output)     result.error starts with "Revert" and output is 0x-hex
    OtherError(msg)    any other error text, a Revert without usable output,
                       or a result that is not an object (lookup failure)
    TransportFailure   connection problems, timeouts, HTTP errors, undecodable
                       bodies and JSON-RPC error envelopes
"""

import itertools
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, List, Optional, Union

import requests
from requests.adapters import HTTPAdapter

from revert_indexer.variables import ERROR_UNKNOWN, READ_CHUNK_SIZE, REVERT_PREFIX, RPC_TIMEOUT, TRACE_METHOD

logger = logging.getLogger(__name__)


class RpcTransportError(RuntimeError):
    """The node could not be reached or refused to answer the call."""


# ---------- Trace outcomes ----------
@dataclass(frozen=True)
class Success:
    pass


@dataclass(frozen=True)
class Revert:
    output: str  # revert data as hex text, 0x prefix already stripped


@dataclass(frozen=True)
class OtherError:
    message: str


@dataclass(frozen=True)
class TransportFailure:
    error: Exception


TraceOutcome = Union[Success, Revert, OtherError, TransportFailure]


# ---------- Helpers ----------
def normalize_tx_hash(tx_hash: str) -> str:
    """Postgres renders bytea hashes as ``\\x<hex>``; the node expects ``0x<hex>``."""
    if tx_hash.startswith("\\x"):
        return tx_hash.replace("\\", "0", 1)
    return tx_hash


def make_session(pool_size: int = 8) -> requests.Session:
    """HTTP session with keep-alive pooling sized for the worker pool."""
    session = requests.Session()
    adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def parse_trace_result(result: Any) -> TraceOutcome:
    if not isinstance(result, dict):
        return OtherError(ERROR_UNKNOWN)

    error = result.get("error") or ""
    if not isinstance(error, str):
        error = str(error)
    if not error:
        return Success()
    if not error.startswith(REVERT_PREFIX):
        return OtherError(error)

    output = result.get("output")
    if not isinstance(output, str) or not output.startswith("0x"):
        return OtherError(error)
    return Revert(output[2:])


# ---------- Client ----------
class TraceClient:
    """Thread-safe wrapper around a single RPC endpoint."""

    def __init__(
        self,
        url: str,
        timeout: float = RPC_TIMEOUT,
        session: Optional[requests.Session] = None,
        pool_size: int = 8,
    ):
        self.url = url
        self.timeout = timeout
        self.session = session if session is not None else make_session(pool_size)
        self._ids = itertools.count(1)

    def _read_body(self, r: requests.Response, method: str, deadline: float) -> bytes:
        # requests' timeout bounds each socket read, not the whole response
        body = bytearray()
        for chunk in r.iter_content(chunk_size=READ_CHUNK_SIZE):
            body += chunk
            if time.monotonic() > deadline:
                raise RpcTransportError(f"{method} exceeded its {self.timeout}s deadline")
        return bytes(body)

    def call(self, method: str, params: List[Any]) -> Any:
        """One JSON-RPC request, bounded by ``timeout`` seconds end to end."""
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        deadline = time.monotonic() + self.timeout
        try:
            r = self.session.post(self.url, json=payload, timeout=self.timeout, stream=True)
            try:
                r.raise_for_status()
                body = self._read_body(r, method, deadline)
            finally:
                r.close()
            resp = json.loads(body)
        except requests.exceptions.RequestException as e:
            # covers timeouts, connection resets and non-2xx statuses
            raise RpcTransportError(f"{method} failed: {e}") from e
        except ValueError as e:
            raise RpcTransportError(f"{method} returned an undecodable body: {e}") from e

        if not isinstance(resp, dict):
            raise RpcTransportError(f"{method} returned a non-object response")
        if resp.get("error") is not None:
            raise RpcTransportError(f"RPC error: {resp['error']}")
        return resp.get("result")

    def trace(self, tx_hash: str) -> TraceOutcome:
        txh = normalize_tx_hash(tx_hash)
        try:
            result = self.call(TRACE_METHOD, [txh])
        except RpcTransportError as e:
            logger.warning("Unable to trace %s: %s", txh, e)
            return TransportFailure(e)
        return parse_trace_result(result)

    def close(self) -> None:
        self.session.close()
