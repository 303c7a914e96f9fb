from fastapi import HTTPException, Request
from fastapi.templating import Jinja2Templates

from cafe_pos.services.local_state_service import LocalStateStore, get_local_state_store


def get_templates(request: Request) -> Jinja2Templates:
    return request.app.state.templates


def get_client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    if request.client:
        return request.client.host
    return None


def get_local_store() -> LocalStateStore:
    return get_local_state_store()


def service_error(exc: ValueError) -> HTTPException:
    message = str(exc)
    if message.endswith('not found'):
        return HTTPException(status_code=404, detail=message)
    return HTTPException(status_code=400, detail=message)
