import logging
from typing import Any, Dict, List, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from . import __version__, config
from .alerts import AlertEngine
from .database import AlertStore, utcnow
from .errors import PersistenceError, ValidationError
from .ingest import submit_snapshot
from .models import AlertRecord, AlertSummary, MachineDetail, Report, RiskScore
from .risk import machine_risk_score

logger = logging.getLogger(__name__)

app = FastAPI(title="healthserver", version=__version__)

# Security
security = HTTPBearer(auto_error=False)


def verify_token(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)):
    # No token configured means the API is open
    if not config.API_TOKEN:
        return None
    if credentials is None or credentials.credentials != config.API_TOKEN:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials


def get_store() -> AlertStore:
    return AlertStore(config.database_path(config.DATABASE_URL))


def get_engine(store: AlertStore = Depends(get_store)) -> AlertEngine:
    return AlertEngine(store)


def _dump(model):
    return model.model_dump(mode="json", by_alias=True)


@app.on_event("startup")
def on_startup():
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    get_store().create_tables()


@app.exception_handler(PersistenceError)
def persistence_error_handler(request: Request, exc: PersistenceError):
    logger.error("Persistence error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Database error"})


@app.get("/health")
def health():
    return {"status": "ok", "version": __version__, "timestamp": utcnow().isoformat()}


# Machine Endpoints
@app.post("/api/machines", status_code=status.HTTP_201_CREATED)
def submit_machine_data(
    payload: Dict[str, Any] = Body(...),
    store: AlertStore = Depends(get_store),
    engine: AlertEngine = Depends(get_engine),
    token: str = Depends(verify_token),
):
    try:
        result = submit_snapshot(store, engine, payload)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail={"error": str(e), "details": e.errors})
    return {
        "success": True,
        "message": "System data received successfully",
        "reportId": result["reportId"],
        "alerts": result["alerts"],
        "timestamp": utcnow().isoformat(),
    }


@app.get("/api/machines")
def list_machines(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    store: AlertStore = Depends(get_store),
    token: str = Depends(verify_token),
):
    machines = []
    for machine in store.list_machines(limit=limit, offset=offset):
        detail = MachineDetail(**machine.model_dump(), latest_report=store.latest_report(machine.machine_id))
        machines.append(_dump(detail))
    return {
        "success": True,
        "data": machines,
        "pagination": {"limit": limit, "offset": offset, "total": len(machines)},
    }


@app.get("/api/machines/{machine_id}", response_model=MachineDetail)
def read_machine(machine_id: str, store: AlertStore = Depends(get_store), token: str = Depends(verify_token)):
    machine = store.get_machine(machine_id)
    if machine is None:
        raise HTTPException(status_code=404, detail="Machine not found")
    return MachineDetail(
        **machine.model_dump(),
        latest_report=store.latest_report(machine_id),
        recent_alerts=store.list_alerts(machine_id=machine_id, limit=10),
    )


@app.get("/api/machines/{machine_id}/reports", response_model=List[Report])
def read_reports(
    machine_id: str,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    store: AlertStore = Depends(get_store),
    token: str = Depends(verify_token),
):
    return store.list_reports(machine_id, limit=limit, offset=offset)


@app.get("/api/machines/{machine_id}/risk", response_model=RiskScore)
def read_risk_score(machine_id: str, store: AlertStore = Depends(get_store), token: str = Depends(verify_token)):
    if store.get_machine(machine_id) is None:
        raise HTTPException(status_code=404, detail="Machine not found")
    return machine_risk_score(store, machine_id, ceiling=config.RISK_NORMALIZATION_CEILING)


# Alert Endpoints
@app.get("/api/alerts", response_model=List[AlertRecord])
def read_alerts(
    machine_id: Optional[str] = Query(None, alias="machineId", min_length=1),
    resolved: Optional[bool] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    store: AlertStore = Depends(get_store),
    token: str = Depends(verify_token),
):
    return store.list_alerts(machine_id=machine_id, resolved=resolved, limit=limit)


@app.get("/api/alerts/summary", response_model=AlertSummary)
def read_alert_summary(engine: AlertEngine = Depends(get_engine), token: str = Depends(verify_token)):
    return engine.get_alert_summary()


@app.post("/api/alerts/{alert_id}/resolve")
def resolve_alert(alert_id: int, store: AlertStore = Depends(get_store), token: str = Depends(verify_token)):
    alert = store.resolve_alert(alert_id)
    if alert is None:
        raise HTTPException(status_code=404, detail="Alert not found")
    return {"success": True, "message": "Alert resolved successfully", "data": _dump(alert)}
