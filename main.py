from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Query, Request

from rrc import db
from rrc.api_models import RecordOut, RecordRequest, RecordStatusOut, ReconcileOut, SchedulerStatusOut, validate_name
from rrc.engine import EngineConfig, RolloutEngine
from rrc.errors import InvalidInterval, RecordBusy, RolloutError, StoreError
from rrc.kube_ops import KubeRecordStore, KubeWorkloadStore, load_kube_config
from rrc.models import RecordRef, RollingRestart, format_rfc3339
from rrc.recorder import RecordStore
from rrc.runtime import RuntimeState
from rrc.scheduler import Scheduler
from rrc.selector import WorkloadStore
from rrc.settings import configure_logging, settings


def _record_out(rec: RollingRestart, runtime: RuntimeState) -> RecordOut:
    last = rec.status.last_rollout_time
    st = runtime.get(rec.ref)
    return RecordOut(
        namespace=rec.namespace,
        name=rec.name,
        selector=dict(rec.spec.selector),
        interval=rec.spec.interval,
        status=RecordStatusOut(
            last_rollout_time=format_rfc3339(last) if last else None,
            deployments=list(rec.status.affected_workloads),
        ),
        scheduler=(
            SchedulerStatusOut(
                state=st.state,
                message=st.message,
                next_check_at=st.next_check_at,
                failures=st.failures,
                updated_at=st.updated_at,
            )
            if st
            else None
        ),
    )


def _ref(namespace: str, name: str) -> RecordRef:
    try:
        validate_name("namespace", namespace)
        validate_name("name", name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return RecordRef(namespace, name)


def create_app(
    record_store: RecordStore | None = None,
    workload_store: WorkloadStore | None = None,
    start_scheduler: bool | None = None,
) -> FastAPI:
    """Build the API. Stores default to the Kubernetes-backed ones (or SQLite
    records when RRC_RECORD_BACKEND=sqlite) and are created at startup."""

    def startup(app: FastAPI) -> None:
        configure_logging()
        db.init_db()
        records = record_store
        workloads = workload_store
        if workloads is None or (records is None and settings.record_backend != "sqlite"):
            load_kube_config()
        if records is None:
            records = (
                db.SqliteRecordStore(settings.namespace)
                if settings.record_backend == "sqlite"
                else KubeRecordStore(namespace=settings.namespace)
            )
        if workloads is None:
            workloads = KubeWorkloadStore()

        runtime = RuntimeState()
        engine = RolloutEngine(records, workloads, EngineConfig.from_settings(settings))
        scheduler = Scheduler(
            engine,
            records,
            runtime,
            workers=settings.workers,
            resync_interval_s=settings.resync_interval_s,
            backoff_base_s=settings.error_backoff_base_s,
            backoff_max_s=settings.error_backoff_max_s,
        )
        app.state.records = records
        app.state.runtime = runtime
        app.state.scheduler = scheduler

        start = settings.start_scheduler if start_scheduler is None else start_scheduler
        if start:
            scheduler.start()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        startup(app)
        yield
        app.state.scheduler.stop()

    app = FastAPI(title="Rolling Restart Controller", lifespan=lifespan)

    @app.get("/health")
    def health() -> dict:
        return {"status": "healthy"}

    @app.get("/records", response_model=list[RecordOut])
    def list_records(request: Request) -> list[RecordOut]:
        try:
            recs = request.app.state.records.list()
        except StoreError as e:
            raise HTTPException(status_code=502, detail=str(e)) from e
        return [_record_out(r, request.app.state.runtime) for r in recs]

    @app.put("/records/{namespace}/{name}", response_model=RecordOut)
    def put_record(namespace: str, name: str, req: RecordRequest, request: Request) -> RecordOut:
        ref = _ref(namespace, name)
        if not isinstance(request.app.state.records, db.SqliteRecordStore):
            raise HTTPException(status_code=409, detail="Records are managed as custom resources; use kubectl.")
        if any(not k for k in req.selector):
            raise HTTPException(status_code=400, detail="selector keys must be non-empty")
        rec = db.upsert_record(ref.namespace, ref.name, req.selector, req.interval)
        db.log_event("INFO", f"Record registered (interval={req.interval}, selector={req.selector})", record=str(ref))
        request.app.state.scheduler.enqueue(ref)
        return _record_out(rec, request.app.state.runtime)

    @app.delete("/records/{namespace}/{name}")
    def delete_record(namespace: str, name: str, request: Request) -> dict:
        ref = _ref(namespace, name)
        if not isinstance(request.app.state.records, db.SqliteRecordStore):
            raise HTTPException(status_code=409, detail="Records are managed as custom resources; use kubectl.")
        if not db.delete_record(ref.namespace, ref.name):
            raise HTTPException(status_code=404, detail="unknown record")
        request.app.state.runtime.forget(ref)
        db.log_event("INFO", "Record deleted", record=str(ref))
        return {"deleted": str(ref)}

    @app.post("/records/{namespace}/{name}/reconcile", response_model=ReconcileOut)
    def reconcile(namespace: str, name: str, request: Request) -> ReconcileOut:
        ref = _ref(namespace, name)
        try:
            result = request.app.state.scheduler.reconcile_now(ref)
        except RecordBusy as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        except InvalidInterval as e:
            raise HTTPException(status_code=422, detail=str(e)) from e
        except RolloutError as e:
            db.log_event("ERROR", f"Manual reconcile failed: {e}", record=str(ref))
            raise HTTPException(status_code=502, detail=str(e)) from e
        if result.requeue_after is None:
            raise HTTPException(status_code=404, detail="unknown record")
        if result.rolled_out:
            db.log_event("INFO", f"Manual reconcile restarted {len(result.affected_workloads)} deployment(s)", record=str(ref))
        request.app.state.scheduler.enqueue(ref, result.requeue_after.total_seconds())
        return ReconcileOut(
            record=str(ref),
            rolled_out=result.rolled_out,
            requeue_after_s=result.requeue_after.total_seconds(),
            deployments=list(result.affected_workloads),
        )

    @app.get("/events")
    def events(limit: int = Query(100, ge=1, le=1000)) -> list[dict]:
        return db.latest_events(limit)

    return app


app = create_app()
