from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select, func, text
from loguru import logger

from app.core.config import settings
from app.db.core import get_session
from app.db.schema import Product

router = APIRouter()


@router.get("/", status_code=status.HTTP_200_OK, tags=["Health"])
def index():
    return {"status": "API is running", "name": settings.app_name}


@router.get("/readiness", status_code=status.HTTP_200_OK, tags=["Health"])
def readiness_check(session: Session = Depends(get_session)):
    """
    Checks the database and reports how many anchors are still in flight.
    """
    try:
        session.exec(text("SELECT 1"))
        minting = session.exec(
            select(func.count()).select_from(Product).where(Product.is_minting == True)  # noqa: E712
        ).one()
    except SQLAlchemyError:
        logger.exception("Database readiness check failed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database not ready"
        )

    return {"status": "ready", "database": "online", "anchors_in_flight": minting}
