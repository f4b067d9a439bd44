"""Middleware for organization context."""
from functools import wraps
from flask import g, request

from stockledger.exceptions import ValidationError


def resolve_organization_id():
    """
    Read organizationId from the query string or the JSON body.

    Returns None if the request does not carry one.
    """
    organization_id = request.args.get('organizationId')
    if not organization_id and request.is_json:
        payload = request.get_json(silent=True) or {}
        if isinstance(payload, dict):
            organization_id = payload.get('organizationId')
    if organization_id is None:
        return None
    organization_id = str(organization_id).strip()
    return organization_id or None


def require_organization(f):
    """
    Decorator: Require an organization scope.

    Sets g.organization_id. Every stock read and write is filtered by it.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        organization_id = resolve_organization_id()
        if organization_id is None:
            raise ValidationError('organizationId is required')
        g.organization_id = organization_id
        return f(*args, **kwargs)
    return decorated_function
