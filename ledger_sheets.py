import logging
import re
import threading

import gspread
import requests
from google.auth.exceptions import GoogleAuthError
from google.oauth2.service_account import Credentials
from gspread.utils import rowcol_to_a1

from catalog import Product, sort_products, to_int
from errors import LedgerError, ValidationError
from ledger import (BUSINESS_INFO_FIELDS, OrderLedger, ledger_read, ledger_write,
                    normalize_business_info)
from models import format_kst, now_kst
from orders import Order

logger = logging.getLogger(__name__)

SCOPES = ['https://www.googleapis.com/auth/spreadsheets']

# 워크시트 이름
PASSWORD_SHEET = 'password'
BUSINESS_INFO_SHEET = 'business_info'
PRODUCTS_SHEET = 'products'
ORDER_SHEET = 'order'
MEMBER_SHEET = 'member_list'

# 1행은 헤더, 데이터는 2행부터
PRODUCT_COLUMNS = ('id', 'name', 'description', 'price', 'imageUrl', 'category',
                   'weight', 'available', 'displayOrder', 'detailPageUrl')
ORDER_COLUMNS = ('createdAt', 'id', 'customerName', 'customerPhone', 'customerEmail',
                 'address', 'products', 'totalAmount', 'status', 'request',
                 'paymentKey', 'cancelReason', 'cancelledAt')

ORDER_ID_COL = ORDER_COLUMNS.index('id') + 1
STATUS_COL = ORDER_COLUMNS.index('status') + 1
CANCEL_REASON_COL = ORDER_COLUMNS.index('cancelReason') + 1
CANCELLED_AT_COL = ORDER_COLUMNS.index('cancelledAt') + 1

PRODUCTS_LAST_COL = rowcol_to_a1(1, len(PRODUCT_COLUMNS)).rstrip('1')
BUSINESS_INFO_RANGE = f"A2:{rowcol_to_a1(2, len(BUSINESS_INFO_FIELDS))}"
MEMBER_SETTINGS_RANGE = 'D1:E1'


def credentials_from_env(client_email, private_key, project_id=None):
    """환경변수의 서비스 계정 정보로 자격 증명 생성 (개행은 \\n 으로 들어옴)"""
    info = {
        'type': 'service_account',
        'client_email': client_email,
        'private_key': (private_key or '').replace('\\n', '\n'),
        'project_id': project_id,
        'token_uri': 'https://oauth2.googleapis.com/token',
    }
    return Credentials.from_service_account_info(info, scopes=SCOPES)


def _pad(row, width):
    return list(row) + [''] * (width - len(row))


def _parse_int(value, allow_none=False):
    if isinstance(value, str):
        value = value.replace(',', '').strip()
    return to_int(value, '숫자', allow_none=allow_none)


def _parse_bool(value):
    return str(value).strip().upper() in ('TRUE', '1', 'Y', 'O')


def product_to_row(product):
    return [
        product.id,
        product.name,
        product.description,
        product.price,
        product.image_url,
        product.category,
        '' if product.weight is None else product.weight,
        bool(product.available),
        product.display_order,
        product.detail_page_url,
    ]


def row_to_product(row):
    values = dict(zip(PRODUCT_COLUMNS, _pad(row, len(PRODUCT_COLUMNS))))
    return Product.from_dict({
        'id': values['id'],
        'name': values['name'],
        'description': values['description'],
        'price': _parse_int(values['price'] or 0),
        'imageUrl': values['imageUrl'],
        'category': values['category'],
        'weight': _parse_int(values['weight'], allow_none=True),
        'available': _parse_bool(values['available']),
        'displayOrder': _parse_int(values['displayOrder'] or 0),
        'detailPageUrl': values['detailPageUrl'],
    })


def order_to_row(order):
    return [
        order.created_at,
        order.id,
        order.customer_name,
        order.customer_phone,
        order.customer_email,
        order.address,
        order.products_summary,
        order.total_amount,
        order.status,
        order.request,
        order.payment_key,
        order.cancel_reason,
        order.cancelled_at,
    ]


def row_to_order(row):
    values = dict(zip(ORDER_COLUMNS, _pad(row, len(ORDER_COLUMNS))))
    return Order(
        id=values['id'],
        created_at=values['createdAt'],
        customer_name=values['customerName'],
        customer_phone=values['customerPhone'],
        customer_email=values['customerEmail'],
        address=values['address'],
        products=values['products'],
        total_amount=_parse_int(values['totalAmount'] or 0),
        status=values['status'] or 'pending',
        request=values['request'],
        payment_key=values['paymentKey'],
        cancel_reason=values['cancelReason'],
        cancelled_at=values['cancelledAt'],
    )


class SheetsLedger(OrderLedger):
    """구글 스프레드시트를 장부로 사용

    시트 연결은 처음 사용할 때 한 번만 연다.
    """

    failures = (
        gspread.exceptions.GSpreadException,
        GoogleAuthError,
        requests.exceptions.RequestException,
        ValidationError,  # 시트에 사람이 입력한 값이 숫자가 아닌 경우
    )

    def __init__(self, sheet_id=None, service_account=None, spreadsheet=None):
        self.sheet_id = sheet_id
        self.service_account = service_account or {}
        self._spreadsheet = spreadsheet
        self._lock = threading.Lock()

    def connect(self):
        with self._lock:
            if self._spreadsheet is not None:
                return self._spreadsheet
            if not self.sheet_id or not self.service_account.get('client_email'):
                raise LedgerError('구글 시트 설정이 없습니다.')
            try:
                creds = credentials_from_env(**self.service_account)
            except ValueError as e:
                logger.error(f"❌ 서비스 계정 키를 읽지 못했습니다: {e}")
                raise LedgerError('구글 시트 인증 정보가 올바르지 않습니다.') from e
            self._spreadsheet = gspread.authorize(creds).open_by_key(self.sheet_id)
            logger.info(f"✅ 구글 시트 연결됨: {self.sheet_id}")
            return self._spreadsheet

    def worksheet(self, name):
        return self.connect().worksheet(name)

    @staticmethod
    def _write(ws, range_name, values):
        ws.update(range_name=range_name, values=values, value_input_option='RAW')

    # ---- 관리자 비밀번호
    @ledger_read
    def get_password(self):
        value = self.worksheet(PASSWORD_SHEET).acell('A2').value
        if value is None:
            return None
        return str(value).strip()

    @ledger_write
    def update_password(self, new_password):
        sanitized = '' if new_password is None else str(new_password).strip()
        self._write(self.worksheet(PASSWORD_SHEET), 'A2', [[sanitized]])
        return True

    # ---- 사업자 정보
    @ledger_read
    def get_business_info(self):
        row = self.worksheet(BUSINESS_INFO_SHEET).row_values(2)
        if not any(str(v).strip() for v in row):
            return None
        return dict(zip(BUSINESS_INFO_FIELDS, _pad(row, len(BUSINESS_INFO_FIELDS))))

    @ledger_write
    def update_business_info(self, info):
        info = normalize_business_info(info)
        row = [info[key] for key in BUSINESS_INFO_FIELDS]
        self._write(self.worksheet(BUSINESS_INFO_SHEET), BUSINESS_INFO_RANGE, [row])
        return True

    # ---- 상품
    @ledger_read
    def get_all_products(self):
        rows = self.worksheet(PRODUCTS_SHEET).get_all_values()[1:]
        return [row_to_product(row) for row in rows if row and str(row[0]).strip()]

    @ledger_write
    def update_all_products(self, products):
        rows = [product_to_row(p) for p in sort_products(products)]
        ws = self.worksheet(PRODUCTS_SHEET)
        # 비우고 다시 쓰는 전체 교체 (병합 없음, 마지막 쓰기가 남음)
        ws.batch_clear([f'A2:{PRODUCTS_LAST_COL}'])
        if rows:
            self._write(ws, f'A2:{rowcol_to_a1(len(rows) + 1, len(PRODUCT_COLUMNS))}', rows)
        logger.info(f"✅ 상품 {len(rows)}개 시트 백업")
        return True

    # ---- 주문
    @ledger_write
    def append_order(self, order):
        self.worksheet(ORDER_SHEET).append_row(order_to_row(order), value_input_option='RAW')
        return True

    @ledger_read
    def get_all_orders(self):
        rows = self.worksheet(ORDER_SHEET).get_all_values()[1:]
        orders = [row_to_order(row) for row in rows if len(row) >= ORDER_ID_COL and row[ORDER_ID_COL - 1]]
        orders.reverse()
        return orders

    @ledger_write
    def update_order_status(self, order_id, status, cancel_reason=None):
        ws = self.worksheet(ORDER_SHEET)
        ids = ws.col_values(ORDER_ID_COL)
        try:
            # 헤더(1행) 제외
            row = ids.index(order_id, 1) + 1
        except ValueError:
            logger.warning(f"⚠️ 장부에서 주문을 찾을 수 없음: {order_id}")
            return False

        self._write(ws, rowcol_to_a1(row, STATUS_COL), [[status]])
        if cancel_reason:
            start = rowcol_to_a1(row, CANCEL_REASON_COL)
            end = rowcol_to_a1(row, CANCELLED_AT_COL)
            self._write(ws, f'{start}:{end}', [[cancel_reason, format_kst(now_kst())]])
        return True

    # ---- 회원
    @ledger_read
    def get_members(self):
        rows = self.worksheet(MEMBER_SHEET).get('A:B')
        return [{'name': row[0], 'memberId': row[1]} for row in rows
                if len(row) >= 2 and re.fullmatch(r'\d{4}', str(row[1]))]

    @ledger_write
    def add_member(self, name, member_id):
        self.worksheet(MEMBER_SHEET).append_row([name, member_id], value_input_option='RAW',
                                                table_range='A:B')
        return True

    @ledger_read
    def get_member_validation(self):
        rows = self.worksheet(MEMBER_SHEET).get(MEMBER_SETTINGS_RANGE)
        settings = rows[0] if rows else ['memberValidation', 'true']
        return len(settings) > 1 and settings[1] == 'true'

    @ledger_write
    def set_member_validation(self, enabled):
        self._write(self.worksheet(MEMBER_SHEET), MEMBER_SETTINGS_RANGE,
                    [['memberValidation', 'true' if enabled else 'false']])
        return True
