"""
Access policy.
Pure functions that decide where a user lands and what they may do. They
return decisions; performing the redirect is the caller's job.
"""
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

ALL_ACCESS = "all_access"

LOGIN_ROUTE = "/login"
DEFAULT_ROUTE = "/dashboard"

# Operational roles land straight on their work queue
ROLE_LANDING_ROUTES: Dict[str, str] = {
    "hub_procurement": "/hub/procurement/purchases",
    "store_procurement": "/store/procurement/purchases",
    "hub_cutting_cleaning": "/hub/cutting/management",
    "store_cutting_cleaning": "/store/cutting/management",
    "hub_packing": "/hub/packing/management",
    "store_packing": "/store/packing/management",
    "hub_dispatch": "/hub/dispatch/management",
    "store_dispatch": "/store/dispatch/management",
    "hub_delivery": "/hub/delivery/agent",
    "store_delivery": "/store/delivery/agent",
}

# Ledger actions and the permission each one needs
ORDERS_EDIT = "hub_orders_edit"
PAYMENTS_RECORD = "payments_record"
REFUNDS_RECORD = "refunds_record"


class User(BaseModel):
    id: str
    name: str
    role: str
    permissions: List[str] = Field(default_factory=list)


class RouteDecision(BaseModel):
    path: str
    replace: bool = True
    reason: str


def resolve_landing_route(user: Optional[User]) -> RouteDecision:
    if user is None:
        return RouteDecision(path=LOGIN_ROUTE, reason="not authenticated")

    path = ROLE_LANDING_ROUTES.get(user.role)
    if path:
        return RouteDecision(path=path, reason=f"landing page for {user.role}")
    return RouteDecision(path=DEFAULT_ROUTE, reason="default landing page")


def has_permission(user: Optional[User], permission: str) -> bool:
    if user is None:
        return False
    return ALL_ACCESS in user.permissions or permission in user.permissions


def guard_route(user: Optional[User], permission: str) -> Optional[RouteDecision]:
    """None when the user may stay; otherwise where to send them instead."""
    if user is None:
        return resolve_landing_route(None)
    if has_permission(user, permission):
        return None
    landing = resolve_landing_route(user)
    return RouteDecision(path=landing.path, reason=f"missing permission {permission}")
