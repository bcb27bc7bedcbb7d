"""
Health Check Router
Liveness for everyone, DynamoDB reachability for admins
"""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from spendbox.core.config import settings
from spendbox.core.deps import authorize
from spendbox.db import dynamo
from spendbox.models.user import UserInDB

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
def health_check():
    """
    Health check endpoint.
    Returns API status.
    """
    return {
        "status": "healthy",
        "service": settings.PROJECT_NAME,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/status")
def aws_services_status(admin: UserInDB = Depends(authorize("admin"))):
    """
    Check that both DynamoDB tables answer a one-item scan.
    """
    tables = dynamo.table_status()
    connected = all(table["status"] == "accessible" for table in tables.values())
    if not connected:
        logger.error(f"DynamoDB check failed: {tables}")

    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": {"dynamodb": {"connected": connected, "tables": tables}},
        "overall_status": "healthy" if connected else "degraded",
    }
