"""
api/routes/v1/terms.py -- Terms and conditions.

GET /terms/active is public. POST /terms/accept needs a valid session but
not previously accepted terms, since this is how terms get accepted.
"""

from fastapi import APIRouter, Depends, Request

from api.errors import raise_for_result
from api.models import AcceptTermsRequest, AcceptTermsResponse, TermResponse, ok
from auth.dependencies import get_client_info, get_current_user
from auth.models import User

router = APIRouter()


@router.get("/terms/active")
def active_terms(request: Request) -> dict:
    result = request.app.state.terms_service.active()
    raise_for_result(result)
    return ok(TermResponse.from_domain(result.data))


@router.post("/terms/accept")
def accept_terms(request: Request, body: AcceptTermsRequest, current_user: User = Depends(get_current_user)) -> dict:
    """Accept by termId, else by version, else the newest active terms."""
    result = request.app.state.terms_service.accept(
        current_user.id, term_id=body.term_id, version=body.version, client=get_client_info(request)
    )
    raise_for_result(result)
    return ok(AcceptTermsResponse(**result.data))
