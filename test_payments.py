#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""토스페이먼츠 연동 테스트 (requests 를 가짜 응답으로 교체)"""

import pytest
import requests

import payments
from app import app, register_services
from cache import TTLCache
from errors import PaymentError, StoreError
from notion import NotionClient
from payments import TossPayments


class FakeResponse:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self._body = body

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._body is None:
            raise ValueError('no json')
        return self._body


@pytest.fixture
def calls(monkeypatch):
    recorded = []
    replies = []

    def fake_post(url, json=None, auth=None, timeout=None):
        recorded.append({'url': url, 'json': json, 'auth': auth, 'timeout': timeout})
        reply = replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    monkeypatch.setattr(payments.requests, 'post', fake_post)
    return recorded, replies


def test_confirm_sends_basic_auth_and_amount(calls):
    recorded, replies = calls
    replies.append(FakeResponse(200, {'status': 'DONE', 'totalAmount': 20000}))

    result = TossPayments('test_sk', timeout=5).confirm('pay_1', 'O1', '20000')

    assert result['status'] == 'DONE'
    assert recorded[0]['url'] == 'https://api.tosspayments.com/v1/payments/confirm'
    assert recorded[0]['json'] == {'paymentKey': 'pay_1', 'orderId': 'O1', 'amount': 20000}
    assert recorded[0]['auth'] == ('test_sk', '')
    assert recorded[0]['timeout'] == 5


def test_cancel_posts_reason(calls):
    recorded, replies = calls
    replies.append(FakeResponse(200, {'status': 'CANCELED'}))

    TossPayments('test_sk').cancel('pay_123', '재고 없음')

    assert recorded[0]['url'] == 'https://api.tosspayments.com/v1/payments/pay_123/cancel'
    assert recorded[0]['json'] == {'cancelReason': '재고 없음'}


def test_provider_error_is_passed_through(calls):
    _, replies = calls
    replies.append(FakeResponse(400, {'code': 'INVALID_REQUEST', 'message': '잘못된 요청입니다.'}))

    with pytest.raises(PaymentError) as exc_info:
        TossPayments('test_sk').confirm('pay_1', 'O1', 100)

    error = exc_info.value
    assert error.status_code == 400
    assert error.code == 'INVALID_REQUEST'
    assert error.message == '잘못된 요청입니다.'


def test_timeout_and_network_errors(calls):
    _, replies = calls
    replies.append(requests.exceptions.Timeout('slow'))
    replies.append(requests.exceptions.ConnectionError('down'))
    provider = TossPayments('test_sk')

    with pytest.raises(PaymentError) as exc_info:
        provider.cancel('pay_1', 'x')
    assert exc_info.value.status_code == 504

    with pytest.raises(PaymentError) as exc_info:
        provider.cancel('pay_1', 'x')
    assert exc_info.value.status_code == 502


def test_missing_secret_key(calls):
    recorded, _ = calls
    with pytest.raises(StoreError):
        TossPayments('').cancel('pay_1', 'x')
    assert recorded == []


def test_confirm_endpoint_returns_provider_error(calls, client):
    _, replies = calls
    register_services(app, store=app.extensions['store'], ledger=app.extensions['ledger'],
                      payments=TossPayments('test_sk'), notion_client=NotionClient('', TTLCache()))
    replies.append(FakeResponse(403, {'code': 'REJECT_CARD_COMPANY', 'message': '카드사에서 거절했습니다.'}))

    response = client.post('/api/confirm-payment', json={'paymentKey': 'pay_1', 'orderId': 'O1', 'amount': 1000})

    assert response.status_code == 403
    assert response.json['code'] == 'REJECT_CARD_COMPANY'
    assert response.json['message'] == '카드사에서 거절했습니다.'
    assert response.json['success'] is False
