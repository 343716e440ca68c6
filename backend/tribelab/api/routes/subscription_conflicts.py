"""
API endpoints for subscription conflict analysis and repair.

Endpoints:
- GET /admin/subscription-conflicts/{slug} - Analyze conflicts (read-only)
- POST /admin/subscription-conflicts/{slug} - Resolve with "cleanup" or "force-reset"
"""
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from tribelab.core.exceptions import BillingError
from tribelab.core.nextauth import get_current_user
from tribelab.core.rate_limit import limiter, BILLING_READ_LIMIT, CONFLICT_RESOLVE_LIMIT
from tribelab.db.base import get_db
from tribelab.models import User
from tribelab.schemas import AnalysisResult, ResolveConflictsRequest, ResolutionResult
from tribelab.services.reconciliation import reconciliation_service
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/{slug}", response_model=AnalysisResult)
@limiter.limit(BILLING_READ_LIMIT)
async def analyze_subscription_conflicts(
    request: Request,
    slug: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Analyze subscription conflicts for a community.

    Reports stale active records, invalid dates, orphaned subscription
    references and paid-without-subscription mismatches. Never writes.
    """
    try:
        return reconciliation_service.analyze_conflicts(db, slug, current_user)

    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error analyzing subscription conflicts for {slug}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to analyze subscription conflicts")


@router.post("/{slug}", response_model=ResolutionResult)
@limiter.limit(CONFLICT_RESOLVE_LIMIT)
async def resolve_subscription_conflicts(
    request: Request,
    slug: str,
    body: ResolveConflictsRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Resolve subscription conflicts for a community.

    Actions:
    - cleanup: expire stale records, delete records with invalid dates,
      clear orphaned references and reset unbacked paid status
    - force-reset: delete all in-force records and reset billing and trial fields
    """
    try:
        result = reconciliation_service.resolve_conflicts(db, slug, current_user, body.action)
        logger.info(f"User {current_user.id} ran {body.action} on community {slug}: {result.message}")
        return result

    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error resolving subscription conflicts for {slug}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to resolve subscription conflicts")
