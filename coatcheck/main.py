import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse

from coatcheck.config import settings
from coatcheck.db import SessionLocal
from coatcheck.routers import auth, customers, dashboard, estimates, inventory, jobs, notes, services, users
from coatcheck.security.headers import install_security_headers
from coatcheck.services.user_service import ensure_local_admin

logger = logging.getLogger(__name__)

SECRET_FIELD_MARKERS = ('password', 'token', 'secret')


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )


def init_local_admin() -> None:
    if not settings.local_admin_password:
        logger.warning('LOCAL_ADMIN_PASSWORD is not set; skipping local admin setup')
        return
    with SessionLocal() as db:
        _, created = ensure_local_admin(db, settings.local_admin_password)
        db.commit()
    logger.info('Local admin %s', 'created' if created else 'verified')


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging()
    if settings.init_local_admin_on_startup:
        try:
            init_local_admin()
        except Exception:
            logger.exception('Failed to initialize the local admin')
    yield


app = FastAPI(title='CoatCheck', lifespan=lifespan)

install_security_headers(app)


def _validation_errors(exc: RequestValidationError) -> list[dict]:
    errors = []
    for error in exc.errors():
        location = [str(part) for part in error.get('loc', ()) if part not in ('body', 'query', 'path')]
        field_name = '.'.join(location) or 'request'
        message = error.get('msg', 'Invalid value')
        if any(marker in field_name.lower() for marker in SECRET_FIELD_MARKERS):
            message = 'Invalid value'
        errors.append({'field': field_name, 'message': message})
    return errors


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={'detail': 'Invalid request', 'errors': _validation_errors(exc)})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception('Unhandled error on %s %s', request.method, request.url.path)
    return JSONResponse(status_code=500, content={'detail': 'Internal server error'})


app.include_router(auth.router)
app.include_router(dashboard.router)
app.include_router(customers.router)
app.include_router(jobs.router)
app.include_router(services.router)
app.include_router(estimates.router)
app.include_router(notes.router)
app.include_router(inventory.router)
app.include_router(users.router)


@app.get('/robots.txt', response_class=PlainTextResponse)
def robots_txt() -> str:
    return 'User-agent: *\nDisallow: /\n'
