"""Diagnostic records collected while a pass degrades data."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class PartialFetchFailure:
    """A collaborator call failed and its data was treated as absent."""

    stage: str
    subject: str
    reason: str


@dataclass(frozen=True, slots=True)
class IdentityAmbiguity:
    """Two key spaces resolved the same raw id to different native ids."""

    raw_id: str
    chosen_native_id: str
    rejected_native_id: str
    human_identifier: str | None = None


@dataclass(frozen=True, slots=True)
class ParseFailure:
    """A structured attribute could not be parsed and was nulled."""

    native_id: str
    key: str
    reason: str


@dataclass(slots=True)
class PassDiagnostics:
    """Collect the non-fatal problems of a single reconciliation pass."""

    fetch_failures: list[PartialFetchFailure] = field(default_factory=list)
    ambiguities: list[IdentityAmbiguity] = field(default_factory=list)
    parse_failures: list[ParseFailure] = field(default_factory=list)

    def record_fetch_failure(self, stage: str, subject: str, err: Any) -> None:
        """Record a failed collaborator call."""

        self.fetch_failures.append(
            PartialFetchFailure(stage=stage, subject=str(subject), reason=_reason(err))
        )

    def record_ambiguity(self, ambiguity: IdentityAmbiguity) -> None:
        """Record an identity disagreement."""

        self.ambiguities.append(ambiguity)

    def record_parse_failure(self, native_id: str, key: str, err: Any) -> None:
        """Record a malformed structured attribute."""

        self.parse_failures.append(
            ParseFailure(native_id=native_id, key=key, reason=_reason(err))
        )

    @property
    def is_clean(self) -> bool:
        """Return ``True`` when nothing was degraded."""

        return not (self.fetch_failures or self.ambiguities or self.parse_failures)

    def as_dict(self) -> dict[str, list[dict[str, Any]]]:
        """Return a JSON-friendly representation."""

        return {
            "fetch_failures": [asdict(item) for item in self.fetch_failures],
            "ambiguities": [asdict(item) for item in self.ambiguities],
            "parse_failures": [asdict(item) for item in self.parse_failures],
        }


def _reason(err: Any) -> str:
    """Return a short description of ``err``."""

    if isinstance(err, BaseException):
        message = str(err)
        name = type(err).__name__
        return f"{name}: {message}" if message else name
    return str(err)
