# =======================================================================================
# gatewatch/api/routes/checkins.py - Check-in Ingest Endpoint
# =======================================================================================
from fastapi import APIRouter, Depends
from ...models.schemas import CheckinRequest, CheckinResponse
from ...services.checkin_service import CheckinService
from ...utils.exceptions import GateWatchError
from ..dependencies import get_checkin_service, http_error

router = APIRouter()


@router.post("/checkins", response_model=CheckinResponse)
def record_checkin(request: CheckinRequest, service: CheckinService = Depends(get_checkin_service)):
    """Store a scanner check-in and run it through fraud detection."""
    try:
        return service.record_checkin(request)
    except GateWatchError as e:
        raise http_error(e)
