from __future__ import annotations

import logging
from typing import Any, Mapping

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from .errors import RecordNotFound, StoreError, VersionConflict, WorkloadNotFound, WriteRejected
from .intervals import DEFAULT_INTERVAL
from .models import (
    DesiredState,
    ObservedState,
    RecordRef,
    RollingRestart,
    Workload,
    WorkloadRef,
    format_rfc3339,
    parse_rfc3339,
)
from .selector import to_label_selector
from .settings import settings

log = logging.getLogger(__name__)

# Raised below the API client when the apiserver cannot be reached.
TRANSPORT_ERRORS = (HTTPError, OSError)

RECORD_KIND = "RollingRestart"
RECORD_PLURAL = "rollingrestarts"


def load_kube_config() -> None:
    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()


def _describe(e: ApiException) -> str:
    return f"HTTP {e.status}: {e.reason}"


def deployment_to_workload(d: Any) -> Workload:
    template_meta = d.spec.template.metadata if d.spec and d.spec.template else None
    return Workload(
        name=d.metadata.name,
        namespace=d.metadata.namespace,
        labels=dict(d.metadata.labels or {}),
        annotations=dict(d.metadata.annotations) if d.metadata.annotations is not None else None,
        template_annotations=(
            dict(template_meta.annotations) if template_meta and template_meta.annotations is not None else None
        ),
        resource_version=d.metadata.resource_version,
        raw=d,
    )


class KubeWorkloadStore:
    """Deployments read and written through the apps/v1 API."""

    def __init__(self, apps_api: client.AppsV1Api | None = None):
        self.apps_api = apps_api or client.AppsV1Api()

    def list(self, namespace: str, selector: Mapping[str, str]) -> list[Workload]:
        try:
            label_selector = to_label_selector(selector)
        except ValueError as e:
            raise StoreError(f"list deployments in {namespace}: {e}") from e
        try:
            resp = self.apps_api.list_namespaced_deployment(namespace, label_selector=label_selector)
        except ApiException as e:
            raise StoreError(f"list deployments in {namespace}: {_describe(e)}") from e
        except TRANSPORT_ERRORS as e:
            raise StoreError(f"list deployments in {namespace}: {e}") from e
        return [deployment_to_workload(d) for d in resp.items]

    def get(self, ref: WorkloadRef) -> Workload:
        try:
            d = self.apps_api.read_namespaced_deployment(ref.name, ref.namespace)
        except ApiException as e:
            if e.status == 404:
                raise WorkloadNotFound(str(ref)) from e
            raise StoreError(f"read deployment {ref}: {_describe(e)}") from e
        except TRANSPORT_ERRORS as e:
            raise StoreError(f"read deployment {ref}: {e}") from e
        return deployment_to_workload(d)

    def update(self, workload: Workload) -> Workload:
        body = workload.raw
        if body is None:
            raise WriteRejected(f"deployment {workload.ref} was not read from the API")
        body.metadata.annotations = dict(workload.annotations or {})
        # Sending the version we read turns a concurrent change into a 409.
        body.metadata.resource_version = workload.resource_version
        if body.spec.template.metadata is None:
            body.spec.template.metadata = client.V1ObjectMeta()
        body.spec.template.metadata.annotations = dict(workload.template_annotations or {})
        try:
            d = self.apps_api.replace_namespaced_deployment(workload.name, workload.namespace, body)
        except ApiException as e:
            if e.status == 409:
                raise VersionConflict(str(workload.ref)) from e
            if e.status == 404:
                raise WorkloadNotFound(str(workload.ref)) from e
            raise WriteRejected(f"update deployment {workload.ref}: {_describe(e)}") from e
        except TRANSPORT_ERRORS as e:
            raise WriteRejected(f"update deployment {workload.ref}: {e}") from e
        return deployment_to_workload(d)


def record_from_object(obj: Mapping[str, Any]) -> RollingRestart:
    meta = obj.get("metadata") or {}
    spec = obj.get("spec") or {}
    status = obj.get("status") or {}
    return RollingRestart(
        namespace=meta.get("namespace", ""),
        name=meta.get("name", ""),
        spec=DesiredState(
            selector=dict(spec.get("matchLabels") or {}),
            interval=spec.get("interval") or DEFAULT_INTERVAL,
        ),
        status=ObservedState(
            last_rollout_time=parse_rfc3339(status.get("lastRolloutTime")),
            affected_workloads=list(status.get("deployments") or []),
        ),
        resource_version=meta.get("resourceVersion"),
    )


def record_to_object(record: RollingRestart, group: str, version: str) -> dict[str, Any]:
    status: dict[str, Any] = {"deployments": list(record.status.affected_workloads)}
    if record.status.last_rollout_time is not None:
        status["lastRolloutTime"] = format_rfc3339(record.status.last_rollout_time)
    metadata: dict[str, Any] = {"name": record.name, "namespace": record.namespace}
    if record.resource_version:
        metadata["resourceVersion"] = record.resource_version
    return {
        "apiVersion": f"{group}/{version}",
        "kind": RECORD_KIND,
        "metadata": metadata,
        "spec": {"matchLabels": dict(record.spec.selector), "interval": record.spec.interval},
        "status": status,
    }


class KubeRecordStore:
    """RollingRestart custom resources, status written through the status subresource."""

    def __init__(
        self,
        custom_api: client.CustomObjectsApi | None = None,
        group: str | None = None,
        version: str | None = None,
        namespace: str | None = None,
    ):
        self.custom_api = custom_api or client.CustomObjectsApi()
        self.group = group or settings.api_group
        self.version = version or settings.api_version
        self.namespace = namespace

    def get(self, ref: RecordRef) -> RollingRestart:
        try:
            obj = self.custom_api.get_namespaced_custom_object(
                self.group, self.version, ref.namespace, RECORD_PLURAL, ref.name
            )
        except ApiException as e:
            if e.status == 404:
                raise RecordNotFound(str(ref)) from e
            raise StoreError(f"read {RECORD_KIND} {ref}: {_describe(e)}") from e
        except TRANSPORT_ERRORS as e:
            raise StoreError(f"read {RECORD_KIND} {ref}: {e}") from e
        return record_from_object(obj)

    def list(self) -> list[RollingRestart]:
        try:
            if self.namespace:
                resp = self.custom_api.list_namespaced_custom_object(
                    self.group, self.version, self.namespace, RECORD_PLURAL
                )
            else:
                resp = self.custom_api.list_cluster_custom_object(self.group, self.version, RECORD_PLURAL)
        except ApiException as e:
            raise StoreError(f"list {RECORD_PLURAL}: {_describe(e)}") from e
        except TRANSPORT_ERRORS as e:
            raise StoreError(f"list {RECORD_PLURAL}: {e}") from e
        return [record_from_object(obj) for obj in resp.get("items", [])]

    def update_status(self, record: RollingRestart) -> RollingRestart:
        body = record_to_object(record, self.group, self.version)
        try:
            obj = self.custom_api.replace_namespaced_custom_object_status(
                self.group, self.version, record.namespace, RECORD_PLURAL, record.name, body
            )
        except ApiException as e:
            if e.status == 409:
                raise VersionConflict(str(record.ref)) from e
            if e.status == 404:
                raise RecordNotFound(str(record.ref)) from e
            raise WriteRejected(f"update status of {record.ref}: {_describe(e)}") from e
        except TRANSPORT_ERRORS as e:
            raise WriteRejected(f"update status of {record.ref}: {e}") from e
        log.debug("status of %s now at resourceVersion %s", record.ref, (obj.get("metadata") or {}).get("resourceVersion"))
        return record_from_object(obj)
