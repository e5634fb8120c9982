# backend/routes/system.py
from fastapi import APIRouter, Depends, Query, Request

from models.accounts import Account
from schemas.consistency import CleanupResult, ConsistencyReport, HealthReport
from utils.authz import require_admin
from utils.services import Services, client_info, get_services
from utils.tokenJWT import get_current_user

router = APIRouter(prefix="/system", tags=["System"])


# Read-only scan of the account/member invariants (Admin only)
@router.get("/consistency-check", response_model=ConsistencyReport)
def consistency_check(request: Request, current_user: Account = Depends(get_current_user),
                      services: Services = Depends(get_services)):
    require_admin(services.store, services.audit, current_user.id, "consistency check", client_info(request))
    return services.engine.check_consistency()


@router.get("/health", response_model=HealthReport)
def health(request: Request, current_user: Account = Depends(get_current_user),
           services: Services = Depends(get_services)):
    require_admin(services.store, services.audit, current_user.id, "health report", client_info(request))
    return services.engine.health_report()


# Sweep unreferenced lookup and junction rows; dry_run only counts them
@router.post("/cleanup", response_model=CleanupResult)
def cleanup(
    request: Request,
    dry_run: bool = Query(False),
    current_user: Account = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    require_admin(services.store, services.audit, current_user.id, "orphan cleanup", client_info(request))
    return services.engine.cleanup_orphaned_lookups(dry_run=dry_run)
