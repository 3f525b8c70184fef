#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""주문 API 테스트"""

from conftest import fail_commits
from errors import PaymentError


def _order_payload(**overrides):
    data = {
        'customerName': '홍길동',
        'customerPhone': '010-1234-5678',
        'address': '서울시 중구',
        'products': [{'productId': 'P1', 'quantity': 2}],
    }
    data.update(overrides)
    return data


def _create(client, **overrides):
    response = client.post('/api/orders', json=_order_payload(**overrides))
    assert response.status_code == 201, response.json
    return response.json['order']


def test_create_order_prices_from_catalog(client, catalog_products):
    order = _create(client)

    assert order['status'] == 'pending'
    assert order['totalAmount'] == 20000
    assert order['products'] == [{'productId': 'P1', 'quantity': 2, 'name': '고등어', 'price': 10000}]
    assert order['id'].startswith('order-')


def test_client_price_is_ignored(client, catalog_products):
    order = _create(client, products=[
        {'productId': 'P1', 'quantity': 1, 'price': 1},
        {'productId': 'P2', 'quantity': 3, 'price': 1},
    ])
    assert order['totalAmount'] == 10000 + 3 * 3000


def test_unknown_product_is_dropped_from_total(client, catalog_products):
    order = _create(client, products=[
        {'productId': 'P1', 'quantity': 1},
        {'productId': 'deleted', 'quantity': 5},
    ])
    assert order['totalAmount'] == 10000
    assert [item['productId'] for item in order['products']] == ['P1']


def test_payment_order_id_is_kept(client, catalog_products):
    order = _create(client, orderId='toss-order-1', paymentKey='pay_123')
    assert order['id'] == 'toss-order-1'


def test_create_order_validation(client, catalog_products):
    response = client.post('/api/orders', json=_order_payload(customerName=''))
    assert response.status_code == 400
    assert response.json['success'] is False

    response = client.post('/api/orders', json=_order_payload(products=[]))
    assert response.status_code == 400

    response = client.post('/api/orders', json=_order_payload(customerPhone='010-123'))
    assert response.status_code == 400

    response = client.post('/api/orders', json=_order_payload(products=[{'productId': 'P1', 'quantity': 0}]))
    assert response.status_code == 400

    response = client.post('/api/orders', json=_order_payload(products=[{'productId': 'P1', 'quantity': 'two'}]))
    assert response.status_code == 400

    response = client.post('/api/orders', json=_order_payload(products=[{'productId': 'P1', 'quantity': 2.9}]))
    assert response.status_code == 400

    response = client.post('/api/orders', json=_order_payload(customerName={'first': '길동'}))
    assert response.status_code == 400


def test_numeric_contact_fields_are_read_as_text(client, catalog_products):
    order = _create(client, customerPhone=1012345678, address=12)
    assert order['customerPhone'] == '1012345678'
    assert order['address'] == '12'

    # 2.0 처럼 정수로 떨어지는 값은 허용
    order = _create(client, products=[{'productId': 'P1', 'quantity': 2.0}])
    assert order['totalAmount'] == 20000


def test_retried_order_is_not_recorded_twice(admin_client, catalog_products, payments):
    first = _create(admin_client, orderId='toss-1', paymentKey='pay_123')

    response = admin_client.post('/api/orders', json=_order_payload(orderId='toss-1', paymentKey='pay_123'))

    assert response.status_code == 200
    assert response.json['order']['id'] == first['id']
    assert payments.cancels == []
    orders = admin_client.get('/api/orders').json['orders']
    assert [o['id'] for o in orders] == ['toss-1']
    assert orders[0]['status'] == 'pending'


def test_reused_order_id_with_other_payment_is_rejected(admin_client, catalog_products, payments):
    _create(admin_client, orderId='toss-1', paymentKey='pay_123')

    response = admin_client.post('/api/orders', json=_order_payload(orderId='toss-1', paymentKey='pay_999'))
    assert response.status_code == 409
    response = admin_client.post('/api/orders', json=_order_payload(orderId='toss-1'))
    assert response.status_code == 409

    assert payments.cancels == []
    assert admin_client.get('/api/orders/toss-1').json['order']['paymentKey'] == 'pay_123'


def test_order_save_failure_cancels_payment(client, catalog_products, payments, sql_ledger, monkeypatch):
    fail_commits(monkeypatch, sql_ledger)

    response = client.post('/api/orders', json=_order_payload(orderId='toss-1', paymentKey='pay_123'))

    assert response.status_code == 500
    body = response.json
    assert body['code'] == 'ORDER_SAVE_FAILED'
    assert body['paymentConfirmed'] is True
    assert body['paymentCancelled'] is True
    assert payments.cancels == [('pay_123', '주문 저장 실패로 인한 자동 취소')]


def test_order_save_failure_reports_when_auto_cancel_fails(client, catalog_products, payments, sql_ledger,
                                                            monkeypatch):
    fail_commits(monkeypatch, sql_ledger)
    payments.cancel_error = PaymentError('이미 취소된 결제입니다.', status_code=400, code='ALREADY_CANCELED_PAYMENT')

    response = client.post('/api/orders', json=_order_payload(paymentKey='pay_123'))

    assert response.status_code == 500
    assert response.json['paymentConfirmed'] is True
    assert response.json['paymentCancelled'] is False


def test_order_save_failure_without_payment(client, catalog_products, payments, sql_ledger, monkeypatch):
    fail_commits(monkeypatch, sql_ledger)

    response = client.post('/api/orders', json=_order_payload())

    assert response.status_code == 500
    assert 'paymentConfirmed' not in response.json
    assert payments.cancels == []


def test_admin_routes_require_token(client, catalog_products):
    order = _create(client)
    assert client.get('/api/orders').status_code == 401
    assert client.get(f"/api/orders/{order['id']}").status_code == 401
    assert client.put(f"/api/orders/{order['id']}", json={'status': 'confirmed'}).status_code == 401


def test_list_orders_newest_first(admin_client, catalog_products):
    first = _create(admin_client, orderId='order-a')
    second = _create(admin_client, orderId='order-b')

    response = admin_client.get('/api/orders')
    assert response.status_code == 200
    ids = [o['id'] for o in response.json['orders']]
    assert ids == [second['id'], first['id']]
    assert response.json['orders'][0]['products'] == '고등어 x 2'


def test_get_unknown_order(admin_client):
    response = admin_client.get('/api/orders/nope')
    assert response.status_code == 404


def test_search_by_phone_hides_payment_key(client, catalog_products):
    _create(client, orderId='order-a', paymentKey='pay_secret')
    _create(client, orderId='order-b', customerPhone='010-9999-0000')

    response = client.get('/api/orders/search?phone=01012345678')
    assert response.status_code == 200
    orders = response.json['orders']
    assert [o['id'] for o in orders] == ['order-a']
    assert 'paymentKey' not in orders[0]
    assert orders[0]['hasPaymentKey'] is True

    assert client.get('/api/orders/search?phone=0101').status_code == 400
    assert client.get('/api/orders/search').status_code == 400


def test_admin_cancel_cancels_payment_first(admin_client, catalog_products, payments):
    order = _create(admin_client, orderId='O1', paymentKey='pay_123')

    response = admin_client.put('/api/orders/O1', json={'status': 'cancelled', 'cancelReason': '재고 없음'})

    assert response.status_code == 200, response.json
    assert payments.cancels == [('pay_123', '재고 없음')]
    stored = admin_client.get(f"/api/orders/{order['id']}").json['order']
    assert stored['status'] == 'cancelled'
    assert stored['cancelReason'] == '재고 없음'
    assert stored['cancelledAt']


def test_admin_cancel_payment_failure_keeps_order(admin_client, catalog_products, payments):
    _create(admin_client, orderId='O1', paymentKey='pay_123')
    payments.cancel_error = PaymentError('취소할 수 없는 결제입니다.', status_code=400, code='NOT_CANCELABLE_PAYMENT')

    response = admin_client.put('/api/orders/O1', json={'status': 'cancelled'})

    assert response.status_code == 400
    assert response.json['code'] == 'NOT_CANCELABLE_PAYMENT'
    assert admin_client.get('/api/orders/O1').json['order']['status'] == 'pending'


def test_status_transitions(admin_client, catalog_products, payments):
    _create(admin_client, orderId='O1')

    assert admin_client.put('/api/orders/O1', json={'status': 'confirmed'}).status_code == 200
    assert admin_client.put('/api/orders/O1', json={'status': 'pending'}).status_code == 409
    assert admin_client.put('/api/orders/O1', json={'status': 'completed'}).status_code == 200
    assert admin_client.put('/api/orders/O1', json={'status': 'cancelled'}).status_code == 409
    assert admin_client.put('/api/orders/O1', json={'status': 'shipped'}).status_code == 400

    order = admin_client.get('/api/orders/O1').json['order']
    assert order['status'] == 'completed'
    assert order['cancelReason'] == ''
    assert payments.cancels == []


def test_admin_cancel_without_payment_key(admin_client, catalog_products, payments):
    _create(admin_client, orderId='O1')

    response = admin_client.put('/api/orders/O1', json={'status': 'cancelled'})

    assert response.status_code == 200
    assert payments.cancels == []
    assert response.json['order']['cancelReason'] == '관리자 취소'


def test_customer_cancel_pending_order(client, catalog_products, payments, sql_ledger):
    _create(client, orderId='O1', paymentKey='pay_123')

    response = client.post('/api/cancel-payment', json={'orderId': 'O1', 'cancelReason': '단순 변심'})

    assert response.status_code == 200
    assert payments.cancels == [('pay_123', '단순 변심')]
    order = sql_ledger.get_order_by_id('O1')
    assert order.status == 'cancelled'
    assert order.cancel_reason == '단순 변심'


def test_customer_cancel_rules(admin_client, catalog_products, payments):
    _create(admin_client, orderId='no-key')
    _create(admin_client, orderId='confirmed', paymentKey='pay_1')
    admin_client.put('/api/orders/confirmed', json={'status': 'confirmed'})

    response = admin_client.post('/api/cancel-payment', json={'orderId': 'no-key', 'cancelReason': '변심'})
    assert response.status_code == 400

    response = admin_client.post('/api/cancel-payment', json={'orderId': 'confirmed', 'cancelReason': '변심'})
    assert response.status_code == 400

    response = admin_client.post('/api/cancel-payment', json={'orderId': 'missing', 'cancelReason': '변심'})
    assert response.status_code == 404

    response = admin_client.post('/api/cancel-payment', json={'orderId': 'confirmed'})
    assert response.status_code == 400

    assert payments.cancels == []


def test_customer_cancel_ledger_failure_is_reported(client, catalog_products, payments, sql_ledger, monkeypatch):
    _create(client, orderId='O1', paymentKey='pay_123')
    fail_commits(monkeypatch, sql_ledger)

    response = client.post('/api/cancel-payment', json={'orderId': 'O1', 'cancelReason': '단순 변심'})

    assert response.status_code == 500
    body = response.json
    assert body['code'] == 'LEDGER_UPDATE_FAILED'
    assert body['paymentCancelled'] is True
    assert body['ledgerUpdated'] is False
    assert payments.cancels == [('pay_123', '단순 변심')]


def test_confirm_payment(client, payments):
    response = client.post('/api/confirm-payment', json={'paymentKey': 'pay_1', 'orderId': 'O1', 'amount': '20000'})
    assert response.status_code == 200
    assert payments.confirms == [('pay_1', 'O1', 20000)]

    response = client.post('/api/confirm-payment', json={'paymentKey': 'pay_1', 'orderId': 'O1'})
    assert response.status_code == 400
