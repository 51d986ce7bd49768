# drop_relay/api/messages.py

from fastapi import APIRouter, Depends, Request, Response

from drop_relay.api.schemas import ErrorSchema, PollRequestSchema, PollResponseSchema, SendRequestSchema
from drop_relay.services.relay_service import RelayService

router = APIRouter(prefix="/api/v1")

ERROR_RESPONSES = {code: {"model": ErrorSchema} for code in (400, 401, 404, 429, 500)}


def get_relay(request: Request) -> RelayService:
    """FastAPI dependency returning the relay wired up by create_app()."""
    return request.app.state.relay


@router.post("/send", status_code=201, response_class=Response, responses=ERROR_RESPONSES)
def send_message(payload: SendRequestSchema, relay: RelayService = Depends(get_relay)):
    relay.send(
        to_public_key=payload.to_public_key,
        encrypted_data=payload.encrypted_data,
        timestamp=payload.timestamp,
        signature=payload.signature,
    )
    return Response(status_code=201)


@router.post("/poll", response_model=PollResponseSchema, responses=ERROR_RESPONSES)
def poll_messages(payload: PollRequestSchema, relay: RelayService = Depends(get_relay)):
    return relay.poll(timestamp=payload.timestamp, signature=payload.signature)
