from datetime import timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Query, Request, Response, status

from .container import ReminderContainer
from .exceptions import InvalidRule, ReconciliationConflict, StorageUnavailable
from .schemas import ReconcileRead, ReminderRead, ReminderToggle, ScanRead


def get_reminder_container(request: Request) -> ReminderContainer:
    return request.app.state.container


def verify_api_key_dependency(
    request: Request,
    x_api_key: Optional[str] = Header(None),
    authorization: Optional[str] = Header(None),
) -> bool:
    """
    Dependency to verify the API key when any keys are configured
    """
    valid_keys = get_reminder_container(request).settings.API_KEYS
    if not valid_keys:
        return True

    api_key = None
    if x_api_key:
        api_key = x_api_key
    elif authorization and authorization.startswith("Bearer "):
        api_key = authorization.split(" ", 1)[1]

    if not api_key or api_key not in valid_keys:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
    return True


def _unavailable(e: StorageUnavailable) -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=f"Reminder store unavailable: {e}")


router = APIRouter(dependencies=[Depends(verify_api_key_dependency)])


@router.put("/settings/{owner_id}", response_model=ReconcileRead)
def reconcile_settings_endpoint(
    owner_id: str,
    payload: Dict[str, Any] = Body(...),
    container: ReminderContainer = Depends(get_reminder_container),
):
    """Replace the owner's whole reminder set from their settings."""
    try:
        result = container.reconciler.reconcile(owner_id, payload)
    except InvalidRule as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ReconciliationConflict as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except StorageUnavailable as e:
        raise _unavailable(e)
    return ReconcileRead(
        owner_id=owner_id,
        method=result.method,
        reminders=[ReminderRead.model_validate(r) for r in result.reminders],
        rejected={category: error.reason for category, error in result.rejected.items()},
    )


@router.get("/", response_model=List[ReminderRead])
def list_reminders_endpoint(
    owner_id: str = Query(...),
    container: ReminderContainer = Depends(get_reminder_container),
):
    try:
        return container.store.get_by_owner(owner_id)
    except StorageUnavailable as e:
        raise _unavailable(e)


@router.get("/upcoming", response_model=List[ReminderRead])
def upcoming_reminders_endpoint(
    owner_id: str = Query(...),
    window_minutes: int = Query(30, ge=1, le=7 * 24 * 60),
    container: ReminderContainer = Depends(get_reminder_container),
):
    """Enabled reminders for the owner due within the next ``window_minutes``."""
    horizon = container.reconciler.now() + timedelta(minutes=window_minutes)
    try:
        return container.store.get_upcoming(owner_id, horizon)
    except StorageUnavailable as e:
        raise _unavailable(e)


@router.delete("/", status_code=200)
def delete_owner_reminders_endpoint(
    owner_id: str = Query(...),
    container: ReminderContainer = Depends(get_reminder_container),
):
    try:
        deleted = container.store.delete_all_for_owner(owner_id)
    except StorageUnavailable as e:
        raise _unavailable(e)
    return {"owner_id": owner_id, "deleted": deleted}


@router.post("/scan", response_model=ScanRead)
def scan_endpoint(container: ReminderContainer = Depends(get_reminder_container)):
    """Wake the embedded agent, or run one scan inline when none is running."""
    if container.embedded_agent and container.agent.running:
        container.agent.wake()
        return ScanRead(mode="woken")
    report = container.agent.run_once()
    return ScanRead(mode="scanned", fired=report.fired, failed=report.failed, missed=report.missed)


@router.get("/health")
def health_endpoint(container: ReminderContainer = Depends(get_reminder_container)):
    return {
        "status": "ok" if container.store.ping() else "degraded",
        "agent": container.agent.state.value,
        "agent_running": container.agent.running,
        "wake_channel": container.wake_channel.name,
        "sink": container.sink.name,
    }


@router.get("/{reminder_id}", response_model=ReminderRead)
def get_reminder_endpoint(
    reminder_id: str,
    container: ReminderContainer = Depends(get_reminder_container),
):
    try:
        r = container.store.get(reminder_id)
    except StorageUnavailable as e:
        raise _unavailable(e)
    if not r:
        raise HTTPException(status_code=404, detail="Reminder not found")
    return r


@router.patch("/{reminder_id}", response_model=ReminderRead)
def toggle_reminder_endpoint(
    reminder_id: str,
    payload: ReminderToggle,
    container: ReminderContainer = Depends(get_reminder_container),
):
    """Enable or disable one reminder; enabling recomputes its next trigger."""
    try:
        r = container.reconciler.set_enabled(reminder_id, payload.enabled)
    except StorageUnavailable as e:
        raise _unavailable(e)
    if not r:
        raise HTTPException(status_code=404, detail="Reminder not found")
    return r


@router.delete("/{reminder_id}", status_code=204)
def delete_reminder_endpoint(
    reminder_id: str,
    container: ReminderContainer = Depends(get_reminder_container),
):
    try:
        deleted = container.store.delete(reminder_id)
    except StorageUnavailable as e:
        raise _unavailable(e)
    if not deleted:
        raise HTTPException(status_code=404, detail="Reminder not found")
    return Response(status_code=204)
