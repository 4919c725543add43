"""
Caller identity from bearer tokens minted by the external identity provider.

Tokens are HS256 JWTs signed with ``SECRET_KEY`` and carry ``sub``, ``role``,
``email`` and ``name``. Credentials are never handled here.
"""

from functools import wraps

import jwt
from flask import current_app, g, request

from app.errors import AuthError
from app.models import Customer, Vendor
from app.store import LedgerStore

ROLES = ("CUSTOMER", "VENDOR", "ADMIN")


def decode_token(token):
    try:
        claims = jwt.decode(token, current_app.config["SECRET_KEY"], algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise AuthError("Token has expired")
    except jwt.InvalidTokenError:
        raise AuthError("Invalid token")

    if not claims.get("sub"):
        raise AuthError("Token is missing a subject")
    role = str(claims.get("role", "CUSTOMER")).upper()
    if role not in ROLES:
        raise AuthError(f"Unknown role {role}", status_code=403)
    claims["role"] = role
    return claims


def identity_required(*roles):
    """Require a bearer token, optionally restricted to ``roles``."""

    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            header = request.headers.get("Authorization", "")
            if not header.startswith("Bearer "):
                raise AuthError("Authorization header missing or malformed")
            claims = decode_token(header.split(" ", 1)[1].strip())
            if roles and claims["role"] not in roles:
                raise AuthError("You do not have access to this resource", status_code=403)
            g.identity = claims
            return view(*args, **kwargs)

        return wrapper

    return decorator


def current_customer(store=None):
    """Customer row for the caller, created on first sight."""
    store = store or LedgerStore()
    claims = g.identity
    customer = store.first(Customer, Customer.auth_uid == claims["sub"])
    if customer is None:
        with store.atomic():
            customer = store.create(
                Customer(
                    auth_uid=claims["sub"],
                    email=claims.get("email"),
                    display_name=claims.get("name"),
                )
            )
        current_app.logger.info(f"Registered customer profile for {claims['sub']}")
    return customer


def current_vendor(store=None):
    store = store or LedgerStore()
    vendor = store.first(Vendor, Vendor.auth_uid == g.identity["sub"])
    if vendor is None:
        raise AuthError("No vendor profile for this account", status_code=403)
    return vendor


def is_admin():
    return g.identity.get("role") == "ADMIN"
