# =======================================================================================
# gatewatch/api/routes/gates.py - Gate Management Endpoints
# =======================================================================================
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.engine import Connection
from ...models.schemas import (
    ClusteringResult, CreateGateRequest, DiscoveredGate, Gate, GateBinding,
    GateMergeSuggestion, MergeGatesRequest, RenameGateRequest, SetBindingRequest,
)
from ...services.gate_clustering import GateClusteringService
from ...services.gate_service import GateService
from ...services.threshold_service import ThresholdService
from ...utils.exceptions import GateWatchError
from ..dependencies import get_actor, get_db_connection, http_error

router = APIRouter()
gate_service = GateService()
clustering_service = GateClusteringService(gate_service)
threshold_service = ThresholdService()


# ---- gates ----

@router.get("/events/{event_id}/gates", response_model=List[Gate])
def list_gates(
    event_id: str,
    status: Optional[str] = Query(None, description="Filter by gate status"),
    conn: Connection = Depends(get_db_connection),
):
    return gate_service.list_gates(conn, event_id, status)


@router.post("/events/{event_id}/gates", response_model=Gate)
def create_gate(
    event_id: str,
    request: CreateGateRequest,
    conn: Connection = Depends(get_db_connection),
    actor: Optional[str] = Depends(get_actor),
):
    try:
        return gate_service.create_gate(conn, event_id, request.name, request.latitude, request.longitude, actor)
    except GateWatchError as e:
        raise http_error(e)


@router.post("/gates/{gate_id}/approve", response_model=Gate)
def approve_gate(gate_id: int, conn: Connection = Depends(get_db_connection), actor: Optional[str] = Depends(get_actor)):
    try:
        return gate_service.approve(conn, gate_id, actor)
    except GateWatchError as e:
        raise http_error(e)


@router.post("/gates/{gate_id}/reject", response_model=Gate)
def reject_gate(gate_id: int, conn: Connection = Depends(get_db_connection), actor: Optional[str] = Depends(get_actor)):
    try:
        return gate_service.reject(conn, gate_id, actor)
    except GateWatchError as e:
        raise http_error(e)


@router.post("/gates/{gate_id}/rename", response_model=Gate)
def rename_gate(
    gate_id: int,
    request: RenameGateRequest,
    conn: Connection = Depends(get_db_connection),
    actor: Optional[str] = Depends(get_actor),
):
    try:
        return gate_service.rename(conn, gate_id, request.name, actor)
    except GateWatchError as e:
        raise http_error(e)


@router.post("/gates/merge", response_model=Gate)
def merge_gates(
    request: MergeGatesRequest,
    conn: Connection = Depends(get_db_connection),
    actor: Optional[str] = Depends(get_actor),
):
    try:
        return gate_service.merge(conn, request.primary_gate_id, request.secondary_gate_id, actor)
    except GateWatchError as e:
        raise http_error(e)


# ---- bindings ----

@router.get("/gates/{gate_id}/bindings", response_model=List[GateBinding])
def list_bindings(gate_id: int, conn: Connection = Depends(get_db_connection)):
    try:
        gate_service.get(conn, gate_id)
        return gate_service.list_bindings(conn, gate_id)
    except GateWatchError as e:
        raise http_error(e)


@router.put("/gates/{gate_id}/bindings", response_model=GateBinding)
def set_binding(
    gate_id: int,
    request: SetBindingRequest,
    conn: Connection = Depends(get_db_connection),
    actor: Optional[str] = Depends(get_actor),
):
    try:
        return gate_service.set_binding(conn, gate_id, request.category, request.status, actor)
    except GateWatchError as e:
        raise http_error(e)


# ---- clustering ----

@router.post("/events/{event_id}/gates/cluster", response_model=ClusteringResult)
def run_clustering(
    event_id: str,
    start_index: int = Query(0, ge=0, description="Resume the pairwise pass from this pair"),
    conn: Connection = Depends(get_db_connection),
):
    thresholds = threshold_service.get(conn, event_id)
    return clustering_service.run(conn, event_id, thresholds, start_index=start_index)


@router.get("/events/{event_id}/gates/discover", response_model=List[DiscoveredGate])
def discover_gates(event_id: str, conn: Connection = Depends(get_db_connection)):
    """Candidate physical gates from scanner GPS readings."""
    thresholds = threshold_service.get(conn, event_id)
    return clustering_service.discover_physical_gates(conn, event_id, thresholds)


# ---- merge suggestions ----

@router.get("/events/{event_id}/merge-suggestions", response_model=List[GateMergeSuggestion])
def list_merge_suggestions(
    event_id: str,
    status: Optional[str] = Query("pending"),
    conn: Connection = Depends(get_db_connection),
):
    return gate_service.list_suggestions(conn, event_id, status)


@router.post("/merge-suggestions/{suggestion_id}/approve", response_model=Gate)
def approve_merge_suggestion(
    suggestion_id: int, conn: Connection = Depends(get_db_connection), actor: Optional[str] = Depends(get_actor)
):
    try:
        return gate_service.approve_suggestion(conn, suggestion_id, actor)
    except GateWatchError as e:
        raise http_error(e)


@router.post("/merge-suggestions/{suggestion_id}/reject", response_model=GateMergeSuggestion)
def reject_merge_suggestion(
    suggestion_id: int, conn: Connection = Depends(get_db_connection), actor: Optional[str] = Depends(get_actor)
):
    try:
        return gate_service.reject_suggestion(conn, suggestion_id, actor)
    except GateWatchError as e:
        raise http_error(e)
