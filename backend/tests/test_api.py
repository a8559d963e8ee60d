# Overview: HTTP-level coverage of the API blueprints through the Flask test client.

from conftest import TEST_PASSWORD, auth_headers


class TestAuthRoutes:
    def test_register_then_me(self, client, db_session):
        response = client.post('/api/auth/register', json={
            'name': 'Kiosk Ltd',
            'email': 'boss@kiosk.test',
            'password': TEST_PASSWORD,
            'tax_rate_bps': 800,
        })
        assert response.status_code == 201
        body = response.get_json()
        assert body['business']['tax_rate_bps'] == 800
        assert body['user']['role'] == 'owner'

        me = client.get('/api/auth/me', headers=auth_headers(body['token']))
        assert me.status_code == 200
        assert me.get_json()['user']['email'] == 'boss@kiosk.test'

    def test_weak_password_rejected(self, client, db_session):
        response = client.post('/api/auth/register', json={
            'name': 'Weak', 'email': 'weak@kiosk.test', 'password': 'short',
        })
        assert response.status_code == 400

    def test_login_bad_credentials(self, client, owner):
        response = client.post('/api/auth/login', json={'email': owner.email, 'password': 'Wrong12345'})
        assert response.status_code == 401

    def test_login_and_logout(self, client, owner):
        response = client.post('/api/auth/login', json={'email': owner.email, 'password': TEST_PASSWORD})
        assert response.status_code == 200
        token = response.get_json()['token']

        assert client.post('/api/auth/logout', headers=auth_headers(token)).status_code == 200
        assert client.get('/api/auth/me', headers=auth_headers(token)).status_code == 401

    def test_missing_token(self, client, db_session):
        assert client.get('/api/accounts').status_code == 401

    def test_staff_cannot_add_users(self, client, headers):
        created = client.post('/api/auth/users', headers=headers, json={
            'email': 'clerk@acme.test', 'password': TEST_PASSWORD,
        })
        assert created.status_code == 201
        login = client.post('/api/auth/login', json={'email': 'clerk@acme.test', 'password': TEST_PASSWORD})
        staff_headers = auth_headers(login.get_json()['token'])

        response = client.post('/api/auth/users', headers=staff_headers, json={
            'email': 'other@acme.test', 'password': TEST_PASSWORD,
        })
        assert response.status_code == 403


class TestFinanceRoutes:
    def test_record_and_list_transactions(self, client, headers, cash_account):
        response = client.post('/api/transactions', headers=headers, json={
            'type': 'income', 'amount_cents': 10000, 'account_id': cash_account.id, 'category': 'Sales',
        })
        assert response.status_code == 201

        response = client.post('/api/transactions', headers=headers, json={
            'type': 'expense', 'amount_cents': 3000, 'account_id': cash_account.id, 'category': 'Rent',
        })
        assert response.status_code == 201

        account = client.get(f'/api/accounts/{cash_account.id}', headers=headers).get_json()
        assert account['balance_cents'] == 7000

        listed = client.get('/api/transactions?type=expense', headers=headers).get_json()
        assert [t['amount_cents'] for t in listed['items']] == [3000]

    def test_transfer_insufficient_funds_is_conflict(self, client, headers, cash_account, bank_account):
        response = client.post('/api/transfers', headers=headers, json={
            'from_account_id': cash_account.id, 'to_account_id': bank_account.id, 'amount_cents': 500,
        })
        assert response.status_code == 409
        assert 'error' in response.get_json()

    def test_invalid_amount(self, client, headers, cash_account):
        response = client.post('/api/transactions', headers=headers, json={
            'type': 'income', 'amount_cents': 12.5, 'account_id': cash_account.id, 'category': 'Sales',
        })
        assert response.status_code == 400

    def test_tax_endpoint(self, client, headers):
        response = client.post('/api/finance/tax', headers=headers, json={'amount_cents': 2000, 'rate_bps': 1600})
        assert response.get_json() == {'net_cents': 2000, 'tax_cents': 320, 'gross_cents': 2320}

    def test_verify_account(self, client, headers, cash_account):
        body = client.get(f'/api/accounts/{cash_account.id}/verify', headers=headers).get_json()
        assert body['ok'] is True


class TestProductRoutes:
    def test_create_adjust_and_logs(self, client, headers):
        created = client.post('/api/products', headers=headers, json={
            'sku': 'TEA-1', 'name': 'Tea', 'price_cents': 250, 'stock': 4, 'reorder_level': 5,
        })
        assert created.status_code == 201
        product_id = created.get_json()['id']

        low = client.get('/api/products/low-stock', headers=headers).get_json()
        assert [p['id'] for p in low['items']] == [product_id]

        adjusted = client.post(f'/api/products/{product_id}/stock', headers=headers, json={'quantity_change': -6})
        assert adjusted.status_code == 409

        restocked = client.post(f'/api/products/{product_id}/restock', headers=headers, json={'quantity': 6})
        assert restocked.get_json()['stock'] == 10

        logs = client.get(f'/api/products/{product_id}/logs', headers=headers).get_json()['items']
        assert [log['reason'] for log in logs] == ['initial', 'restock']

    def test_unknown_product(self, client, headers):
        assert client.get('/api/products/9999', headers=headers).status_code == 404


class TestCustomerRoutes:
    def test_search_and_credit(self, client, headers, customer):
        found = client.get('/api/customers?q=jane', headers=headers).get_json()['items']
        assert [c['id'] for c in found] == [customer.id]

        response = client.post(f'/api/customers/{customer.id}/credit', headers=headers,
                               json={'amount_cents': 20000, 'type': 'increase'})
        assert response.status_code == 409

    def test_csv_round_trip(self, client, headers, db_session):
        imported = client.post('/api/customers/import', headers=headers, json={
            'csv': 'name,email,tags\nAmy,amy@example.test,a;b\n',
        })
        assert imported.status_code == 201
        assert imported.get_json()['imported'] == 1

        exported = client.get('/api/customers/export', headers=headers)
        assert exported.mimetype == 'text/csv'
        assert '"amy@example.test"' in exported.get_data(as_text=True)


class TestPosRoutes:
    def test_checkout_receipt_and_return(self, client, headers, product, cash_account):
        summary = client.post('/api/pos/cart/summary', headers=headers, json={
            'items': [{'product_id': product.id, 'quantity': 2}],
        }).get_json()
        assert summary['summary']['total_cents'] == 2320

        response = client.post('/api/pos/checkout', headers=headers, json={
            'items': [{'product_id': product.id, 'quantity': 2}],
            'payment': {'method': 'Cash', 'cash_tendered_cents': 3000},
        })
        assert response.status_code == 201
        sale_id = response.get_json()['sale']['id']

        text = client.get(f'/api/sales/{sale_id}/receipt?format=text', headers=headers)
        assert text.mimetype == 'text/plain'
        assert 'Change' in text.get_data(as_text=True)

        returned = client.post(f'/api/sales/{sale_id}/returns', headers=headers, json={
            'items': [{'product_id': product.id, 'quantity': 1}],
        })
        assert returned.status_code == 201
        assert returned.get_json()['refund_amount_cents'] == 1000

        over = client.post(f'/api/sales/{sale_id}/returns', headers=headers, json={
            'items': [{'product_id': product.id, 'quantity': 5}],
        })
        assert over.status_code == 400

    def test_checkout_empty_cart(self, client, headers):
        response = client.post('/api/pos/checkout', headers=headers, json={'items': [], 'payment': {'method': 'Cash'}})
        assert response.status_code == 400


class TestReportAndCollectionRoutes:
    def test_reports_respond(self, client, headers):
        for path in (
            '/api/reports/daily-sales',
            '/api/reports/stock-value',
            '/api/reports/financial-summary',
            '/api/reports/profit-and-loss',
            '/api/reports/balance-sheet',
            '/api/reports/cash-flow',
            '/api/reports/customer-segments',
            '/api/reports/debtors',
            '/api/reports/audit-logs',
        ):
            assert client.get(path, headers=headers).status_code == 200, path

    def test_bad_date_is_validation_error(self, client, headers):
        response = client.get('/api/reports/profit-and-loss?start=yesterday', headers=headers)
        assert response.status_code == 400

    def test_collection_read_and_query(self, client, headers, customer):
        listed = client.get('/api/collections/customers?status=active', headers=headers).get_json()
        assert [c['id'] for c in listed['items']] == [customer.id]

        assert client.get(f'/api/collections/customers/{customer.id}', headers=headers).status_code == 200
        assert client.get('/api/collections/customers/9999', headers=headers).status_code == 404
        assert client.get('/api/collections/unknown', headers=headers).status_code == 400


def test_health(client, db_session):
    response = client.get('/health')
    assert response.status_code == 200
    assert response.get_json()['status'] == 'healthy'
