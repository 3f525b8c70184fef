#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""테스트 공용 픽스처

app 모듈을 import 하기 전에 환경변수를 맞춰 둔다 (DB 장부 + 메모리 SQLite).
"""
import os
import re
import tempfile
from types import SimpleNamespace

os.environ['LEDGER_BACKEND'] = 'sql'
os.environ['DATABASE_URL'] = 'sqlite://'
os.environ['DATA_DIR'] = tempfile.mkdtemp(prefix='store-test-')
os.environ['ADMIN_DEFAULT_PASSWORD'] = 'admin1234'
os.environ['JWT_SECRET_KEY'] = 'test-jwt-secret'
os.environ['TOSS_SECRET_KEY'] = 'test_sk_dummy'

import gspread
import pytest
from gspread.utils import a1_to_rowcol

from app import app, hash_password, register_services
from cache import TTLCache
from ledger_sheets import ORDER_COLUMNS, PRODUCT_COLUMNS, SheetsLedger
from ledger_sql import SqlLedger
from models import db
from notion import NotionClient
from payments import PaymentProvider
from storage import JsonStore, PRODUCTS

ADMIN_PASSWORD = 'admin1234'


class FakePayments(PaymentProvider):
    """호출 기록만 남기는 결제사"""

    def __init__(self):
        self.confirms = []
        self.cancels = []
        self.cancel_error = None

    def confirm(self, payment_key, order_id, amount):
        self.confirms.append((payment_key, order_id, amount))
        return {'paymentKey': payment_key, 'orderId': order_id, 'totalAmount': amount, 'status': 'DONE'}

    def cancel(self, payment_key, cancel_reason):
        self.cancels.append((payment_key, cancel_reason))
        if self.cancel_error:
            raise self.cancel_error
        return {'paymentKey': payment_key, 'status': 'CANCELED'}


def _cell_ref(label):
    """'B3' -> (3, 2), 'J' -> (None, 10)"""
    letters, digits = re.fullmatch(r'([A-Z]+)(\d*)', label).groups()
    col = a1_to_rowcol(f'{letters}1')[1]
    return (int(digits) if digits else None), col


def _cell_value(value):
    # RAW 로 쓴 값은 읽을 때 표시 문자열로 돌아온다
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'TRUE' if value else 'FALSE'
    return str(value)


class FakeWorksheet:
    """gspread.Worksheet 중 장부가 쓰는 메서드만 흉내"""

    def __init__(self, rows=None):
        self.rows = [[_cell_value(v) for v in row] for row in (rows or [])]
        self.fail = False

    def _check(self):
        if self.fail:
            raise gspread.exceptions.GSpreadException('quota exceeded')

    def _set(self, row, col, value):
        while len(self.rows) < row:
            self.rows.append([])
        line = self.rows[row - 1]
        while len(line) < col:
            line.append('')
        line[col - 1] = _cell_value(value)

    def _get(self, row, col):
        if row > len(self.rows) or col > len(self.rows[row - 1]):
            return ''
        return self.rows[row - 1][col - 1]

    def _bounds(self, label):
        start, _, end = label.partition(':')
        top, left = _cell_ref(start)
        bottom, right = _cell_ref(end or start)
        top = top or 1
        bottom = bottom or max(len(self.rows), top)
        return top, left, bottom, right

    def acell(self, label):
        self._check()
        row, col = _cell_ref(label)
        value = self._get(row, col)
        return SimpleNamespace(value=value or None)

    def update(self, range_name=None, values=None, value_input_option=None):
        self._check()
        top, left, _, _ = self._bounds(range_name)
        for r, row in enumerate(values):
            for c, value in enumerate(row):
                self._set(top + r, left + c, value)

    def row_values(self, row):
        self._check()
        values = list(self.rows[row - 1]) if row <= len(self.rows) else []
        while values and values[-1] == '':
            values.pop()
        return values

    def col_values(self, col):
        self._check()
        values = [self._get(r, col) for r in range(1, len(self.rows) + 1)]
        while values and values[-1] == '':
            values.pop()
        return values

    def get_all_values(self):
        self._check()
        width = max((len(r) for r in self.rows), default=0)
        return [list(r) + [''] * (width - len(r)) for r in self.rows]

    def get(self, label):
        self._check()
        top, left, bottom, right = self._bounds(label)
        result = []
        for r in range(top, bottom + 1):
            row = [self._get(r, c) for c in range(left, right + 1)]
            while row and row[-1] == '':
                row.pop()
            result.append(row)
        while result and not result[-1]:
            result.pop()
        return result

    def batch_clear(self, ranges):
        self._check()
        for label in ranges:
            top, left, bottom, right = self._bounds(label)
            for r in range(top, bottom + 1):
                for c in range(left, right + 1):
                    if r <= len(self.rows) and c <= len(self.rows[r - 1]):
                        self.rows[r - 1][c - 1] = ''

    def append_row(self, values, value_input_option=None, table_range=None):
        self._check()
        last = 0
        for index, row in enumerate(self.rows, start=1):
            if any(v != '' for v in row):
                last = index
        for c, value in enumerate(values, start=1):
            self._set(last + 1, c, value)


class FakeSpreadsheet:
    def __init__(self, worksheets):
        self.worksheets = worksheets

    def worksheet(self, name):
        if name not in self.worksheets:
            raise gspread.exceptions.WorksheetNotFound(name)
        return self.worksheets[name]


@pytest.fixture
def store(tmp_path):
    return JsonStore(str(tmp_path / 'data'))


@pytest.fixture
def payments():
    return FakePayments()


@pytest.fixture
def sql_ledger():
    with app.app_context():
        db.drop_all()
        db.create_all()
        ledger = SqlLedger(db)
        ledger.bootstrap(hash_password(ADMIN_PASSWORD))
        yield ledger
        db.session.remove()


@pytest.fixture
def worksheets():
    return {
        'password': FakeWorksheet([['password'], [ADMIN_PASSWORD]]),
        'business_info': FakeWorksheet([['businessName', 'representative', 'businessLicense', 'address',
                                         'phone', 'email', 'ecommerceLicense', 'kakaoUrl']]),
        'products': FakeWorksheet([list(PRODUCT_COLUMNS)]),
        'order': FakeWorksheet([list(ORDER_COLUMNS)]),
        'member_list': FakeWorksheet([['name', 'memberId']]),
    }


@pytest.fixture
def sheet_ledger(worksheets):
    return SheetsLedger(spreadsheet=FakeSpreadsheet(worksheets))


@pytest.fixture
def client(store, sql_ledger, payments):
    register_services(app, store=store, ledger=sql_ledger, payments=payments,
                      notion_client=NotionClient('', TTLCache()))
    with app.test_client() as client:
        yield client


@pytest.fixture
def admin_client(client):
    response = client.post('/api/auth/verify-admin', json={'password': ADMIN_PASSWORD})
    assert response.status_code == 200
    return client


def seed_products(store, products):
    assert store.write(PRODUCTS, products)
    return products


@pytest.fixture
def catalog_products(store):
    return seed_products(store, [
        {'id': 'P1', 'name': '고등어', 'price': 10000, 'category': '수산물', 'available': True, 'displayOrder': 1},
        {'id': 'P2', 'name': '사과', 'price': 3000, 'category': '과일', 'available': True, 'displayOrder': 2},
    ])


def fail_commits(monkeypatch, ledger):
    """DB 장부 쓰기 장애 흉내"""
    from sqlalchemy.exc import OperationalError

    def broken_commit():
        db.session.rollback()
        raise OperationalError('COMMIT', {}, Exception('database is locked'))

    monkeypatch.setattr(ledger, '_commit', broken_commit)
