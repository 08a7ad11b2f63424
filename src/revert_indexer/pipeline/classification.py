"""The fixed set of classification records written back to ``transactions``."""

from dataclasses import dataclass
from typing import Dict, Optional

from revert_indexer.on_chain.revert_decoder import decode_revert_reason
from revert_indexer.on_chain.rpc_client import OtherError, Revert, Success, TraceOutcome, TransportFailure
from revert_indexer.variables import ERROR_NONE, ERROR_REVERTED, ERROR_UNKNOWN


@dataclass(frozen=True)
class Classification:
    error: str
    revert_reason: Optional[str] = None

    def as_record(self) -> Dict[str, str]:
        record = {"error": self.error}
        if self.revert_reason is not None:
            record["revert_reason"] = self.revert_reason
        return record


def unknown() -> Classification:
    return Classification(ERROR_UNKNOWN)


def reverted(reason: Optional[str]) -> Classification:
    return Classification(ERROR_REVERTED, reason if reason is not None else ERROR_UNKNOWN)


def other_error(message: str) -> Classification:
    return Classification(message)


def not_reverted() -> Classification:
    return Classification(ERROR_NONE)


def classify(outcome: TraceOutcome) -> Optional[Classification]:
    """Map a trace outcome to the record to persist; None means write nothing and retry later."""
    if isinstance(outcome, TransportFailure):
        return None
    if isinstance(outcome, Success):
        return not_reverted()
    if isinstance(outcome, Revert):
        return reverted(decode_revert_reason(outcome.output))
    if isinstance(outcome, OtherError):
        if outcome.message == ERROR_UNKNOWN:
            return unknown()
        return other_error(outcome.message)
    raise TypeError(f"unexpected trace outcome: {outcome!r}")
