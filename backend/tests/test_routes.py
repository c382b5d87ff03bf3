"""
HTTP API tests.

Verifies:
- Authentication and role checks on every protected route
- Sale lifecycle over HTTP: create, get, edit, pay, invoice, void, delete
- Error bodies carry the ledger error message and status
- Sales stats are limited to admin and support
- CSV upload and health endpoint
"""

import io

from tourledger.time_utils import utcnow

from conftest import auth_headers, get_auth_token, reload


SALE = {
    "customer_name": "María Pérez",
    "customer_phone": "809-555-0101",
    "visit_date": "2024-03-01T09:00:00Z",
    "seller_name": "Pedro",
}


def sale_payload(*items, **overrides):
    return {**SALE, **overrides, "items": list(items)}


def create_sale(client, headers, *items, **overrides):
    response = client.post("/api/sales", json=sale_payload(*items, **overrides), headers=headers)
    assert response.status_code == 201, response.json
    return response.json


# =============================================================================
# AUTH
# =============================================================================


class TestAuth:

    def test_login_and_me(self, client, supervisor_user):
        response = client.post("/api/auth/login", json={"username": "ana", "password": "Password123!"})
        assert response.status_code == 200
        assert response.json["user"]["role"] == "supervisor"
        assert response.json["expires_at"].endswith("Z")

        me = client.get("/api/auth/me", headers=auth_headers(response.json["token"]))
        assert me.status_code == 200
        assert me.json["user"]["supervisor_name"] == "Ana"

    def test_login_requires_both_fields(self, client, db_session):
        response = client.post("/api/auth/login", json={"username": "ana"})
        assert response.status_code == 400

    def test_wrong_password(self, client, supervisor_user):
        assert get_auth_token(client, "ana", "wrong-password") is None
        response = client.post("/api/auth/login", json={"username": "ana", "password": "nope"})
        assert response.status_code == 401

    def test_logout_revokes_token(self, client, supervisor_user):
        token = get_auth_token(client, "ana")
        headers = auth_headers(token)

        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401
        assert client.post("/api/auth/logout", headers=headers).status_code == 401

    def test_inactive_user_token_rejected(self, client, db_session, supervisor_user):
        headers = auth_headers(get_auth_token(client, "ana"))
        supervisor_user.is_active = False
        db_session.commit()
        assert client.get("/api/auth/me", headers=headers).status_code == 401

    def test_missing_and_bogus_tokens(self, client, db_session):
        assert client.get("/api/sales").status_code == 401
        assert client.get("/api/sales", headers=auth_headers("not-a-token")).status_code == 401


# =============================================================================
# TOURS
# =============================================================================


class TestTours:

    def test_list_tours(self, client, supervisor_headers, tour_a, tour_b):
        response = client.get("/api/tours", headers=supervisor_headers)
        assert response.status_code == 200
        assert [t["name"] for t in response.json["tours"]] == ["Tour A", "Tour B"]

    def test_create_tour_requires_admin(self, client, supervisor_headers, admin_headers):
        body = {"name": "Nuevo Tour", "price": 1500, "stock": 20}
        denied = client.post("/api/tours", json=body, headers=supervisor_headers)
        assert denied.status_code == 403
        assert denied.json["required_roles"] == ["admin", "support"]

        created = client.post("/api/tours", json=body, headers=admin_headers)
        assert created.status_code == 201
        assert created.json["tour"]["stock"] == 20
        assert created.json["tour"]["sold"] == 0

    def test_create_tour_validation(self, client, admin_headers):
        response = client.post("/api/tours", json={"name": "", "stock": -5}, headers=admin_headers)
        assert response.status_code == 400
        assert set(response.json["details"]["fields"]) == {"name", "stock"}

        response = client.post(
            "/api/tours", json={"name": "Tour Caro", "price": 10 ** 20}, headers=admin_headers,
        )
        assert response.status_code == 400
        assert set(response.json["details"]["fields"]) == {"price"}

    def test_set_stock(self, client, admin_headers, tour_a):
        response = client.patch(f"/api/tours/{tour_a.id}/stock", json={"stock": 3}, headers=admin_headers)
        assert response.status_code == 200
        assert response.json["tour"]["stock"] == 3

        assert client.patch("/api/tours/9999/stock", json={"stock": 3}, headers=admin_headers).status_code == 404
        assert client.patch(f"/api/tours/{tour_a.id}/stock", json={}, headers=admin_headers).status_code == 400


# =============================================================================
# SALES
# =============================================================================


class TestSales:

    def test_create_and_get(self, client, supervisor_headers, tour_a, tour_b):
        body = create_sale(
            client,
            supervisor_headers,
            {"tour_id": tour_a.id, "quantity": 2, "total": 1400},
            {"tour_id": tour_b.id, "quantity": 1, "total": 700},
            supervisor="Someone Else",
        )
        batch = body["batch"]
        assert body["batch_id"] == batch["batch_id"]
        assert batch["total"] == 2100
        assert batch["quantity"] == 3
        assert batch["supervisor"] == "Ana"
        assert batch["lines"][0]["tour"]["name"] == "Tour A"

        fetched = client.get(f"/api/sales/{body['batch_id']}", headers=supervisor_headers)
        assert fetched.status_code == 200
        assert fetched.json["batch"]["total"] == 2100
        assert reload(tour_a).stock == 8

    def test_validation_errors(self, client, supervisor_headers, tour_a):
        response = client.post(
            "/api/sales",
            json={"items": [{"tour_id": tour_a.id, "quantity": 0, "total": -1}]},
            headers=supervisor_headers,
        )
        assert response.status_code == 400
        fields = response.json["details"]["fields"]
        assert "items.0.quantity" in fields
        assert "items.0.total" in fields

    def test_amounts_above_maximum(self, client, supervisor_headers, tour_a):
        huge = 10 ** 20
        response = client.post(
            "/api/sales",
            json=sale_payload({
                "tour_id": tour_a.id, "quantity": 1, "total": huge, "deposit": huge, "balance_due": huge,
            }),
            headers=supervisor_headers,
        )
        assert response.status_code == 400
        fields = response.json["details"]["fields"]
        assert {"items.0.total", "items.0.deposit", "items.0.balance_due"} <= set(fields)
        assert reload(tour_a).stock == 10

        response = client.post(
            "/api/sales",
            json=sale_payload({"tour_id": huge, "quantity": 1, "total": 700}),
            headers=supervisor_headers,
        )
        assert response.status_code == 400
        assert "items.0.tour_id" in response.json["details"]["fields"]

    def test_insufficient_stock(self, client, supervisor_headers, tour_b):
        response = client.post(
            "/api/sales",
            json=sale_payload({"tour_id": tour_b.id, "quantity": 6, "total": 4200}),
            headers=supervisor_headers,
        )
        assert response.status_code == 400
        assert response.json["error"] == "Insufficient stock for Tour B. Available: 5"
        assert response.json["details"]["available"] == 5
        assert reload(tour_b).stock == 5

    def test_import_only_tour_rejected(self, client, supervisor_headers, import_only_tour):
        response = client.post(
            "/api/sales",
            json=sale_payload({"tour_id": import_only_tour.id, "quantity": 1, "total": 0}),
            headers=supervisor_headers,
        )
        assert response.status_code == 400
        assert "import only" in response.json["error"]

    def test_edit_batch(self, client, supervisor_headers, tour_a):
        body = create_sale(client, supervisor_headers, {"tour_id": tour_a.id, "quantity": 5, "total": 3500})
        line_id = body["batch"]["lines"][0]["id"]

        response = client.patch(
            f"/api/sales/{body['batch_id']}",
            json={"items": [{"line_id": line_id, "tour_id": tour_a.id, "quantity": 8, "total": 5600}]},
            headers=supervisor_headers,
        )
        assert response.status_code == 200
        assert response.json["batch"]["quantity"] == 8
        tour = reload(tour_a)
        assert (tour.stock, tour.sold) == (2, 8)

    def test_edit_with_foreign_line(self, client, supervisor_headers, tour_a):
        first = create_sale(client, supervisor_headers, {"tour_id": tour_a.id, "quantity": 1, "total": 700})
        second = create_sale(client, supervisor_headers, {"tour_id": tour_a.id, "quantity": 1, "total": 700})
        foreign_line = second["batch"]["lines"][0]["id"]

        response = client.patch(
            f"/api/sales/{first['batch_id']}",
            json={"items": [{"line_id": foreign_line, "tour_id": tour_a.id, "quantity": 1, "total": 700}]},
            headers=supervisor_headers,
        )
        assert response.status_code == 400
        assert response.json["details"]["line_ids"] == [foreign_line]

    def test_payment_and_invoice(self, client, supervisor_headers, tour_a):
        body = create_sale(client, supervisor_headers, {"tour_id": tour_a.id, "quantity": 1, "total": 700})
        url = f"/api/sales/{body['batch_id']}"

        paid = client.patch(f"{url}/payment", json={"is_paid": True}, headers=supervisor_headers)
        assert paid.status_code == 200
        assert paid.json["batch"]["is_paid"] is True

        bad = client.patch(f"{url}/payment", json={"is_paid": "yes"}, headers=supervisor_headers)
        assert bad.status_code == 400

        invoice = client.patch(f"{url}/invoice", json={"customer_phone": "829-1"}, headers=supervisor_headers)
        assert invoice.status_code == 200
        assert invoice.json["batch"]["customer_phone"] == "829-1"

        reassign = client.patch(f"{url}/invoice", json={"supervisor": "Luis"}, headers=supervisor_headers)
        assert reassign.status_code == 400

    def test_void_then_delete(self, client, supervisor_headers, admin_headers, tour_a):
        body = create_sale(client, supervisor_headers, {"tour_id": tour_a.id, "quantity": 3, "total": 2100})
        url = f"/api/sales/{body['batch_id']}"

        assert client.delete(url, headers=supervisor_headers).status_code == 403
        not_voided = client.delete(url, headers=admin_headers)
        assert not_voided.status_code == 400
        assert not_voided.json["error"] == "Only voided invoices can be deleted"

        voided = client.post(f"{url}/void", json={"reason": "Duplicada"}, headers=supervisor_headers)
        assert voided.status_code == 200
        assert voided.json["batch"]["is_voided"] is True
        assert voided.json["batch"]["lines"][0]["void_reason"] == "Duplicada"
        assert reload(tour_a).stock == 10

        again = client.post(f"{url}/void", headers=supervisor_headers)
        assert again.status_code == 409

        pay = client.patch(f"{url}/payment", json={"is_paid": True}, headers=supervisor_headers)
        assert pay.status_code == 400
        assert pay.json["error"] == "Cannot update payment status of a voided invoice"

        deleted = client.delete(url, headers=admin_headers)
        assert deleted.status_code == 200
        assert deleted.json == {"ok": True, "deleted": 1}
        assert client.get(url, headers=admin_headers).status_code == 404

    def test_supervisors_are_isolated(self, client, supervisor_headers, other_supervisor_user, tour_a):
        body = create_sale(client, supervisor_headers, {"tour_id": tour_a.id, "quantity": 1, "total": 700})
        luis = auth_headers(get_auth_token(client, "luis"))

        assert client.get(f"/api/sales/{body['batch_id']}", headers=luis).status_code == 404
        assert client.post(f"/api/sales/{body['batch_id']}/void", headers=luis).status_code == 404
        assert client.get("/api/sales", headers=luis).json["data"] == []

    def test_stats(self, client, admin_headers, supervisor_headers, support_user, unlimited_tour):
        paid = create_sale(
            client, admin_headers,
            {"tour_id": unlimited_tour.id, "quantity": 2, "total": 1400},
            provincia="Santiago",
        )
        client.patch(f"/api/sales/{paid['batch_id']}/payment", json={"is_paid": True}, headers=admin_headers)
        create_sale(client, admin_headers, {"tour_id": unlimited_tour.id, "quantity": 1, "total": 700})
        voided = create_sale(client, admin_headers, {"tour_id": unlimited_tour.id, "quantity": 1, "total": 900})
        client.post(f"/api/sales/{voided['batch_id']}/void", headers=admin_headers)

        support = auth_headers(get_auth_token(client, support_user.username))
        response = client.get("/api/sales/stats", headers=support)
        assert response.status_code == 200
        assert response.json["paidRevenue"] == 1400
        assert response.json["paidUnits"] == 2
        assert response.json["topSellers"] == [{"sellerName": "Pedro", "totalRevenue": 2100, "invoiceCount": 2}]
        assert response.json["provinciaStats"] == [{"provincia": "Santiago", "total": 1400}]

        assert client.get("/api/sales/stats", headers=supervisor_headers).status_code == 403
        assert client.get("/api/sales/stats").status_code == 401

    def test_list_with_pagination(self, client, admin_headers, unlimited_tour):
        for _ in range(3):
            create_sale(client, admin_headers, {"tour_id": unlimited_tour.id, "quantity": 1, "total": 700})

        response = client.get("/api/sales?page=1&limit=2", headers=admin_headers)
        assert response.status_code == 200
        assert len(response.json["data"]) == 2
        assert response.json["pagination"]["total"] == 3
        assert response.json["pagination"]["hasNext"] is True

        this_year = utcnow().year
        assert len(client.get(f"/api/sales?year={this_year}", headers=admin_headers).json["data"]) == 3
        assert client.get("/api/sales?year=2020&month=13", headers=admin_headers).status_code == 400


# =============================================================================
# IMPORT / HEALTH
# =============================================================================


class TestImportUpload:

    def test_upload(self, client, admin_headers, tour_a):
        csv = "Producto,Total,Fecha\nTour A,700,2024-01-15\nTour X,700,2024-01-16\n".encode("utf-8")
        response = client.post(
            "/api/imports/sales",
            data={"file": (io.BytesIO(csv), "ventas.csv")},
            headers=admin_headers,
            content_type="multipart/form-data",
        )
        assert response.status_code == 200
        assert response.json["created"] == 1
        assert response.json["totalRows"] == 2
        assert response.json["errors"] == [{"message": 'Producto no encontrado: "Tour X"', "rows": [3]}]

    def test_upload_requires_file(self, client, admin_headers):
        response = client.post("/api/imports/sales", data={}, headers=admin_headers)
        assert response.status_code == 400

    def test_upload_rejects_unusable_file(self, client, admin_headers):
        response = client.post(
            "/api/imports/sales",
            data={"file": (io.BytesIO(b"cliente\nJuan\n"), "ventas.csv")},
            headers=admin_headers,
            content_type="multipart/form-data",
        )
        assert response.status_code == 400
        assert "product column" in response.json["error"]

    def test_upload_requires_admin(self, client, supervisor_headers):
        response = client.post(
            "/api/imports/sales",
            data={"file": (io.BytesIO(b"producto,total\n"), "ventas.csv")},
            headers=supervisor_headers,
            content_type="multipart/form-data",
        )
        assert response.status_code == 403


class TestHealth:

    def test_healthy(self, client, tour_a):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json["status"] == "healthy"
        assert response.json["checks"]["database"]["details"]["tours"] == 1

    def test_counter_drift_is_degraded(self, client, db_session, tour_a):
        tour_a.sold = 4
        db_session.commit()
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json["status"] == "degraded"
        assert response.json["checks"]["counters"]["details"][0]["drift"] == 4
