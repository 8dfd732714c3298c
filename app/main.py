import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.db import SessionLocal, engine, get_db, init_db
from app.models import Location, PurchaseOrder, StagingSpot, User
from app.routers import board, delivery, staging, sync
from app.security.sessions import install_auth_session_middleware
from app.services.errors import ServiceError

logging.basicConfig(
    level=settings.log_level.upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.auto_create_tables:
        init_db(app.state.engine)
    yield
    app.state.engine.dispose()


app = FastAPI(title='Materialive Staging', lifespan=lifespan)
app.state.engine = engine
app.state.session_factory = SessionLocal

install_auth_session_middleware(app)

app.include_router(sync.router)
app.include_router(staging.router)
app.include_router(delivery.router)
app.include_router(board.router)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error('%s %s failed: %s', request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.get('/health')
def health(db: Session = Depends(get_db)):
    try:
        counts = {
            'users': db.execute(select(func.count()).select_from(User)).scalar_one(),
            'purchase_orders': db.execute(select(func.count()).select_from(PurchaseOrder)).scalar_one(),
            'staging_spots': db.execute(select(func.count()).select_from(StagingSpot)).scalar_one(),
            'locations': db.execute(select(func.count()).select_from(Location)).scalar_one(),
        }
    except SQLAlchemyError as exc:
        logger.error('Health check failed: %s', exc)
        return JSONResponse(status_code=503, content={'status': 'error', 'database': 'unavailable'})
    return {'status': 'ok', 'database': 'connected', 'counts': counts}
