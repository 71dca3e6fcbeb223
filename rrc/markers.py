from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime

from .models import Workload, format_rfc3339

RESTARTED_AT = "kubectl.kubernetes.io/restartedAt"
RESTARTED_BY = "kubectl.kubernetes.io/restartedBy"
RECORD_KIND = "rollingrestart"


def restarted_by_record_key(api_group: str) -> str:
    return f"{api_group}/restartedByRecord"


def restarted_by_record_kind_key(api_group: str) -> str:
    return f"{api_group}/restartedByRecordKind"


@dataclass(frozen=True)
class RolloutMarker:
    restarted_at: datetime
    restarted_by: str
    record: str  # "<namespace>/<name>" of the desired-state record
    api_group: str
    record_kind: str = RECORD_KIND

    def annotations(self) -> dict[str, str]:
        return {
            RESTARTED_AT: format_rfc3339(self.restarted_at),
            RESTARTED_BY: self.restarted_by,
            restarted_by_record_key(self.api_group): self.record,
            restarted_by_record_kind_key(self.api_group): self.record_kind,
        }


def apply_marker(workload: Workload, marker: RolloutMarker) -> Workload:
    """Return a copy of `workload` carrying the marker on object and pod template.

    Changing the pod template annotations is what makes the workload roll its
    pods. Existing marker keys are overwritten; other keys are left alone.
    """
    values = marker.annotations()
    return replace(
        workload,
        labels=dict(workload.labels or {}),
        annotations={**(workload.annotations or {}), **values},
        template_annotations={**(workload.template_annotations or {}), **values},
    )
