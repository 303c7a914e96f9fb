import logging
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from cafe_pos.auth import Role, get_current_principal
from cafe_pos.routers import auth, management, pos, reports
from cafe_pos.security.csrf import install_csrf_cookie_middleware
from cafe_pos.security.headers import install_security_headers
from cafe_pos.security.sessions import install_auth_session_middleware

logging.basicConfig(level=logging.INFO, format='[%(levelname)s] %(name)s: %(message)s')

app = FastAPI(title='Cafe POS')

TEMPLATE_DIR = Path(__file__).resolve().parent / 'templates'
app.state.templates = Jinja2Templates(directory=str(TEMPLATE_DIR))

install_security_headers(app)
install_csrf_cookie_middleware(app)
install_auth_session_middleware(app)

app.include_router(auth.router)
app.include_router(pos.router)
app.include_router(management.router)
app.include_router(reports.router)


@app.get('/')
def root(request: Request):
    principal = get_current_principal(request)
    if principal.role == Role.ADMIN:
        return RedirectResponse('/reports/dashboard', status_code=303)
    return RedirectResponse('/pos/catalog', status_code=303)


@app.get('/robots.txt', response_class=PlainTextResponse)
def robots_txt() -> str:
    return 'User-agent: *\nDisallow: /\n'
