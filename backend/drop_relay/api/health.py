# drop_relay/api/health.py

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from drop_relay.api.messages import get_relay
from drop_relay.services.relay_service import RelayService

router = APIRouter()


@router.get("/health")
def health_check(relay: RelayService = Depends(get_relay)):
    report = relay.health()
    return JSONResponse(status_code=200 if report.healthy else 500, content=report.to_dict())
