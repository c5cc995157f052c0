"""
Authorization tests.

Verifies:
- Unauthenticated requests return 401
- Sellers are denied admin-only operations (403)
- Admins are denied seller-only operations (403)
- Revoked or unknown tokens are rejected
"""

import pytest

from conftest import auth_headers


# =============================================================================
# UNAUTHENTICATED ACCESS (401)
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/auth/me"),
            ("POST", "/api/auth/logout"),
            ("GET", "/api/users"),
            ("GET", "/api/users/1"),
            ("PUT", "/api/users/1"),
            ("POST", "/api/users/1/recharge"),
            ("GET", "/api/users/1/ledger"),
            ("POST", "/api/products"),
            ("GET", "/api/orders"),
            ("POST", "/api/orders"),
            ("GET", "/api/orders/stats"),
            ("POST", "/api/orders/1/response"),
            ("PATCH", "/api/orders/1/status"),
            ("GET", "/api/chat/conversations"),
            ("GET", "/api/chat/unread"),
            ("POST", "/api/chat/conversations/1/messages"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_unknown_token(self, client, db_session):
        resp = client.get("/api/orders", headers=auth_headers("not-a-real-token"))
        assert resp.status_code == 401

    def test_inactive_user_token(self, client, db_session, seller, seller_headers):
        seller.is_active = False
        db_session.commit()
        assert client.get("/api/orders", headers=seller_headers).status_code == 401


# =============================================================================
# SELLER DENIED ADMIN OPERATIONS (403)
# =============================================================================


class TestSellerDenied:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/users"),
            ("DELETE", "/api/users/1"),
            ("POST", "/api/users/1/recharge"),
            ("POST", "/api/products"),
            ("PUT", "/api/products/1"),
            ("DELETE", "/api/products/1"),
            ("POST", "/api/orders"),
            ("PUT", "/api/orders/1"),
            ("DELETE", "/api/orders/1"),
            ("PATCH", "/api/orders/1/status"),
        ],
    )
    def test_admin_only(self, client, seller_headers, method, path):
        resp = getattr(client, method.lower())(path, json={}, headers=seller_headers)
        assert resp.status_code == 403
        assert resp.get_json()["required_roles"] == ["admin"]

    def test_cannot_view_other_seller_stats(self, client, other_seller, seller_headers):
        resp = client.get(f"/api/orders/stats?seller_id={other_seller.id}", headers=seller_headers)
        assert resp.status_code == 403

    def test_cannot_read_other_ledger(self, client, other_seller, seller_headers):
        resp = client.get(f"/api/users/{other_seller.id}/ledger", headers=seller_headers)
        assert resp.status_code == 403


# =============================================================================
# ADMIN DENIED SELLER OPERATIONS (403)
# =============================================================================


class TestAdminDenied:

    def test_admin_cannot_respond_to_orders(self, client, admin_headers):
        resp = client.post("/api/orders/1/response", json={"response": "accepted"}, headers=admin_headers)
        assert resp.status_code == 403
        assert resp.get_json()["required_roles"] == ["seller"]

    def test_admin_cannot_delete_admin(self, client, admin, admin_headers):
        resp = client.delete(f"/api/users/{admin.id}", headers=admin_headers)
        assert resp.status_code == 409


# =============================================================================
# ADMIN PRIVILEGES
# =============================================================================


class TestAdminAllowed:

    def test_list_users(self, client, seller, admin_headers):
        resp = client.get("/api/users?role=seller", headers=admin_headers)
        assert resp.status_code == 200
        assert [u["email"] for u in resp.get_json()["users"]] == ["seller@shop.test"]

    def test_stats_for_seller(self, client, seller, admin_headers):
        resp = client.get(f"/api/orders/stats?seller_id={seller.id}", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["creditAmount"] == "200.00"

    def test_stats_requires_seller_id(self, client, admin_headers):
        resp = client.get("/api/orders/stats", headers=admin_headers)
        assert resp.status_code == 400
