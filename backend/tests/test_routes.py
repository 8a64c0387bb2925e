# Overview: Pytest coverage for the HTTP layer: identity headers and error mapping.

"""
API Route Tests

Routes translate domain errors into status codes: validation 400, access
denied 403, not found 404, conflicts (duplicates, illegal transitions,
insufficient stock) 409. Missing identity headers are 401.
"""

from franchise_ledger.services import sales_service


class TestIdentityHeaders:
    def test_missing_headers(self, client, db_session):
        response = client.get("/api/franchises")
        assert response.status_code == 401
        assert response.get_json()["error"] == "unauthenticated"

    def test_bad_role(self, client, db_session):
        response = client.get("/api/franchises", headers={"X-User-Id": "u1", "X-User-Role": "owner"})
        assert response.status_code == 401

    def test_bad_franchise_ids(self, client, db_session):
        response = client.get(
            "/api/franchises",
            headers={"X-User-Id": "u1", "X-User-Role": "manager", "X-Franchise-Ids": "1,abc"},
        )
        assert response.status_code == 401

    def test_scoped_franchise_list(self, client, headers, manager_t1, t1, t2):
        response = client.get("/api/franchises", headers=headers(manager_t1))
        assert response.status_code == 200
        assert [f["code"] for f in response.get_json()] == ["T1"]


class TestErrorMapping:
    def test_foreign_and_missing_product_are_403_for_tenants(self, client, headers, manager_t1, t2_product):
        foreign = client.get(f"/api/inventory/products/{t2_product.id}", headers=headers(manager_t1))
        missing = client.get("/api/inventory/products/99999", headers=headers(manager_t1))
        assert foreign.status_code == 403
        assert missing.status_code == 403
        assert foreign.get_json()["error"] == "access_denied"

    def test_missing_product_is_404_for_admin(self, client, headers, admin, db_session):
        response = client.get("/api/inventory/products/99999", headers=headers(admin))
        assert response.status_code == 404

    def test_insufficient_stock_is_409(self, client, headers, manager_t1, product, t1):
        response = client.post(
            "/api/sales",
            json={
                "franchise_id": t1.id,
                "items": [{"product_id": product.id, "quantity": 11}],
                "payment_method": "cash",
                "sale_type": "offline",
            },
            headers=headers(manager_t1),
        )
        body = response.get_json()
        assert response.status_code == 409
        assert body["error"] == "insufficient_stock"
        assert body["details"] == {"available": 10, "requested": 11}

    def test_validation_is_400(self, client, headers, manager_t1, product, t1):
        response = client.post(
            "/api/sales",
            json={
                "franchise_id": t1.id,
                "items": [{"product_id": product.id, "quantity": 1}],
                "payment_method": "barter",
                "sale_type": "offline",
            },
            headers=headers(manager_t1),
        )
        assert response.status_code == 400
        assert response.get_json()["field"] == "payment_method"

    def test_stock_out_overdraw_is_409(self, client, headers, admin, product, t1, t2):
        response = client.post(
            "/api/transfers/stock-out",
            json={"product_id": product.id, "quantity": 15, "from_franchise_id": t1.id, "to_franchise_id": t2.id},
            headers=headers(admin),
        )
        assert response.status_code == 409
        assert response.get_json()["details"] == {"available": 10, "requested": 15}

    def test_direct_stock_edit_rejected(self, client, headers, manager_t1, product):
        response = client.patch(
            f"/api/inventory/products/{product.id}",
            json={"stock_quantity": 500},
            headers=headers(manager_t1),
        )
        assert response.status_code == 400

    def test_invoice_race_is_409(self, client, headers, manager_t1, product, t1, monkeypatch):
        monkeypatch.setattr(sales_service, "invoice_exists", lambda invoice_number: False)
        payload = {
            "franchise_id": t1.id,
            "items": [{"product_id": product.id, "quantity": 1}],
            "payment_method": "card",
            "sale_type": "offline",
            "invoice_number": "RACE-1",
        }
        first = client.post("/api/sales", json=payload, headers=headers(manager_t1))
        second = client.post("/api/sales", json=payload, headers=headers(manager_t1))

        assert first.status_code == 201
        assert second.status_code == 409
        assert second.get_json()["error"] == "duplicate_key"


class TestHappyPaths:
    def test_sale_then_report(self, client, headers, manager_t1, product, t1):
        created = client.post(
            "/api/sales",
            json={
                "franchise_id": t1.id,
                "items": [{"product_id": product.id, "quantity": 2, "unit_price": 100}],
                "payment_method": "card",
                "sale_type": "offline",
                "invoice_number": "WEB-1",
            },
            headers=headers(manager_t1),
        )
        assert created.status_code == 201
        assert created.get_json()["grand_total"] == 200.0

        duplicate = client.post(
            "/api/sales",
            json={
                "franchise_id": t1.id,
                "items": [{"product_id": product.id, "quantity": 1}],
                "payment_method": "card",
                "sale_type": "offline",
                "invoice_number": "WEB-1",
            },
            headers=headers(manager_t1),
        )
        assert duplicate.status_code == 409
        assert duplicate.get_json()["error"] == "duplicate_key"

        report = client.get("/api/reports/profit-loss", headers=headers(manager_t1))
        assert report.status_code == 200
        assert report.get_json()["revenue"] == 200.0

        product_view = client.get(f"/api/inventory/products/{product.id}", headers=headers(manager_t1))
        assert product_view.get_json()["stock_by_franchise"] == [
            {"franchise_id": t1.id, "quantity": 8, "is_original": True}
        ]

    def test_transfer_lifecycle(self, client, headers, manager_t1, manager_t2, product, t1, t2):
        created = client.post(
            "/api/transfers",
            json={"product_id": product.id, "from_franchise_id": t1.id, "to_franchise_id": t2.id, "quantity": 5},
            headers=headers(manager_t1),
        )
        assert created.status_code == 201
        transfer_id = created.get_json()["id"]

        premature = client.post(f"/api/transfers/{transfer_id}/complete", headers=headers(manager_t2))
        assert premature.status_code == 409

        approved = client.post(f"/api/transfers/{transfer_id}/approve", headers=headers(manager_t2))
        assert approved.status_code == 200
        completed = client.post(f"/api/transfers/{transfer_id}/complete", headers=headers(manager_t2))
        assert completed.status_code == 200
        assert completed.get_json()["status"] == "completed"

    def test_import_endpoint(self, client, headers, manager_t1, t1):
        response = client.post(
            "/api/imports/products",
            json={
                "rows": [
                    {"SKU": "LAMP-1", "Name": "Desk Lamp", "Category": "Other", "Buying Price": "5", "Selling Price": "9"},
                    {"SKU": "LAMP-2", "Name": "Lamp", "Category": "Nope", "Buying Price": "5", "Selling Price": "9"},
                ],
                "file_name": "lamps.csv",
            },
            headers=headers(manager_t1),
        )
        body = response.get_json()
        assert response.status_code == 200
        assert body["status"] == "partial"
        assert body["errors"][0]["row"] == 3

        log = client.get(f"/api/imports/{body['import_log_id']}", headers=headers(manager_t1))
        assert log.status_code == 200
        assert log.get_json()["status"] == "partial"

    def test_import_rows_must_be_list(self, client, headers, manager_t1, t1):
        response = client.post("/api/imports/products", json={"rows": "nope"}, headers=headers(manager_t1))
        assert response.status_code == 400

    def test_inventory_reports(self, client, headers, manager_t1, product, t1):
        report = client.get("/api/reports/inventory?dead_stock_days=30", headers=headers(manager_t1))
        assert report.status_code == 200
        body = report.get_json()
        assert body["dead_stock_days"] == 30
        assert body["totals"]["units"] == 10
        assert body["stock_health"]["dead"] == 1

        low = client.get("/api/inventory/low-stock", headers=headers(manager_t1))
        assert low.status_code == 200
        assert low.get_json() == []

        bad = client.get("/api/reports/inventory?dead_stock_days=0", headers=headers(manager_t1))
        assert bad.status_code == 400


    def test_health(self, client, db_session):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.get_json()["checks"]["database"]["status"] == "healthy"
