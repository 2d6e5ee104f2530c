"""
Organization API Endpoints.

Per-partner views of commission ledgers.
"""

from uuid import UUID

from fastapi import APIRouter, HTTPException

from api.models import OrganizationCommissionSummaryResponse
from services.commission_query_service import (
    OrganizationNotFoundError,
    get_organization_commission_summary,
)

router = APIRouter()


@router.get(
    "/organizations/{organization_id}/commission-summary",
    response_model=OrganizationCommissionSummaryResponse,
    summary="Organization Commission Summary",
    description="What one partner organization is owed (pending and processed) and has been paid."
)
def organization_commission_summary(organization_id: UUID):
    """
    Get commission totals for one organization.

    **Example:**
    ```
    GET /api/v1/organizations/{organization_id}/commission-summary
    ```

    **Errors:**
    - 404 if the organization does not exist
    """
    try:
        result = get_organization_commission_summary(organization_id)
    except OrganizationNotFoundError:
        raise HTTPException(status_code=404, detail="Organization not found")
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to get organization commission summary: {str(e)}"
        )

    return OrganizationCommissionSummaryResponse.from_organization_summary(result)
