"""
Test Access Policy
Landing routes per role and permission checks
"""
from orderledger.policy.access import (
    ALL_ACCESS, PAYMENTS_RECORD, REFUNDS_RECORD, User, guard_route, has_permission,
    resolve_landing_route
)


def test_anonymous_user_goes_to_login():
    decision = resolve_landing_route(None)
    assert decision.path == "/login"
    assert decision.replace is True


def test_operational_roles_land_on_their_queue():
    packer = User(id="u1", name="Packer", role="hub_packing")
    rider = User(id="u2", name="Rider", role="store_delivery")

    assert resolve_landing_route(packer).path == "/hub/packing/management"
    assert resolve_landing_route(rider).path == "/store/delivery/agent"


def test_other_roles_land_on_dashboard():
    admin = User(id="u3", name="Admin", role="admin", permissions=[ALL_ACCESS])
    assert resolve_landing_route(admin).path == "/dashboard"


def test_permissions():
    admin = User(id="u3", name="Admin", role="admin", permissions=[ALL_ACCESS])
    cashier = User(id="u4", name="Cashier", role="hub_cashier", permissions=[PAYMENTS_RECORD])

    assert has_permission(admin, REFUNDS_RECORD)
    assert has_permission(cashier, PAYMENTS_RECORD)
    assert not has_permission(cashier, REFUNDS_RECORD)
    assert not has_permission(None, PAYMENTS_RECORD)


def test_guard_route_redirects_without_permission():
    cashier = User(id="u4", name="Cashier", role="hub_packing", permissions=[PAYMENTS_RECORD])

    assert guard_route(cashier, PAYMENTS_RECORD) is None
    denied = guard_route(cashier, REFUNDS_RECORD)
    assert denied.path == "/hub/packing/management"
    assert "refunds_record" in denied.reason
    assert guard_route(None, PAYMENTS_RECORD).path == "/login"
