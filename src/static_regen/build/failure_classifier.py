"""Deterministic classification of content-source fetch failures."""

from __future__ import annotations

from dataclasses import dataclass

from static_regen.http.fetcher import FetchResult

_TRANSIENT_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})


@dataclass(slots=True)
class FetchFailureClassification:
    """Normalized reason for a failed render fetch."""

    reason_code: str
    transient: bool
    status_code: int

    def to_log_meta(self) -> dict[str, object]:
        return {
            "reason_code": self.reason_code,
            "transient": self.transient,
            "status_code": self.status_code,
        }


def classify_fetch_failure(result: FetchResult) -> FetchFailureClassification:
    """Classify a fetch that did not yield a 200 with a non-empty body."""

    if result.timed_out:
        return FetchFailureClassification("timeout", transient=True, status_code=0)
    if result.status_code == 0:
        return FetchFailureClassification("transport", transient=True, status_code=0)
    if result.status_code != 200:
        return FetchFailureClassification(
            f"http_{result.status_code}",
            transient=result.status_code in _TRANSIENT_STATUS_CODES,
            status_code=result.status_code,
        )
    return FetchFailureClassification("empty_body", transient=True, status_code=200)
