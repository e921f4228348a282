"""Result model shared by the check catalogue and the scoring step."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from shared.models import CheckStatus, Severity


@dataclass(frozen=True, slots=True)
class CheckResult:
    """Outcome of one catalogue check against one page."""

    check_id: str
    category: str
    status: CheckStatus
    severity: Severity
    message: str
    evidence: Optional[Dict[str, Any]] = None
    fix_hint: Optional[str] = None

    def is_failure(self) -> bool:
        """Return ``True`` when the check earned no credit for a reason other than SKIP."""

        return self.status is CheckStatus.FAIL

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the result for persistence and telemetry."""

        payload: Dict[str, Any] = {
            "check_id": self.check_id,
            "category": self.category,
            "status": self.status.value,
            "severity": self.severity.value,
            "message": self.message,
        }
        if self.evidence is not None:
            payload["evidence"] = self.evidence
        if self.fix_hint:
            payload["fix_hint"] = self.fix_hint
        return payload
