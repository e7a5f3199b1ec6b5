"""Translation of domain exceptions into HTTP errors"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from clinic_ledger.domain.exceptions import (
    AlreadyExistsError,
    ConfigurationError,
    DomainException,
    GatewayError,
    InvalidAmountError,
    InvalidPlanTermsError,
    InvalidTransitionError,
    LockedError,
    NotFoundError,
    UnauthorizedError,
)
from clinic_ledger.infrastructure.observability.logging import log_domain_error
from clinic_ledger.services.access import Actor

STATUS_CODES = {
    NotFoundError: 404,
    AlreadyExistsError: 409,
    InvalidTransitionError: 409,
    InvalidAmountError: 422,
    InvalidPlanTermsError: 422,
    LockedError: 423,
    UnauthorizedError: 403,
    GatewayError: 502,
    ConfigurationError: 503,
}


def status_code_for(error: DomainException) -> int:
    for error_type, status_code in STATUS_CODES.items():
        if isinstance(error, error_type):
            return status_code
    return 400


@contextmanager
def translate_errors(
    db: Session,
    action: str,
    request_id: str,
    actor: Optional[Actor] = None,
    entity_id: Optional[str] = None,
) -> Iterator[None]:
    """Roll back, log with audit identifiers, and re-raise as HTTPException"""
    user_id = actor.user_id if actor else None
    try:
        yield
    except HTTPException:
        raise
    except DomainException as e:
        db.rollback()
        log_domain_error(e, action, request_id=request_id, user_id=user_id, entity_id=entity_id)
        raise HTTPException(status_code=status_code_for(e), detail=str(e)) from e
    except Exception as e:
        db.rollback()
        log_domain_error(e, action, request_id=request_id, user_id=user_id, entity_id=entity_id, level=logging.ERROR)
        raise HTTPException(status_code=500, detail="Internal server error") from e
