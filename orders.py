import logging
import re
import secrets
import time
from dataclasses import dataclass, field

from catalog import to_int
from errors import (ConflictError, ConsistencyError, IllegalTransitionError, LedgerError, NotFoundError,
                    PaymentError, ValidationError)
from models import format_kst, now_kst

logger = logging.getLogger(__name__)

PENDING = 'pending'
CONFIRMED = 'confirmed'
COMPLETED = 'completed'
CANCELLED = 'cancelled'
STATUSES = (PENDING, CONFIRMED, COMPLETED, CANCELLED)

STATUS_LABELS = {
    PENDING: '대기중',
    CONFIRMED: '확인됨',
    COMPLETED: '완료',
    CANCELLED: '취소',
}

# 허용되는 상태 전이 (완료/취소는 종료 상태)
TRANSITIONS = {
    PENDING: {CONFIRMED, COMPLETED, CANCELLED},
    CONFIRMED: {COMPLETED, CANCELLED},
    COMPLETED: set(),
    CANCELLED: set(),
}

ADMIN_CANCEL_REASON = '관리자 취소'
SAVE_FAILURE_CANCEL_REASON = '주문 저장 실패로 인한 자동 취소'


def can_transition(current, target):
    return target in TRANSITIONS.get(current, set())


def normalize_phone(phone):
    return re.sub(r'[^0-9]', '', phone or '')


def generate_order_id():
    return f'order-{int(time.time() * 1000)}-{secrets.token_hex(3)}'


def text_field(data, key):
    """문자열 입력값 - 숫자는 문자열로 받고 객체/배열은 거부"""
    value = data.get(key)
    if value is None:
        return ''
    if isinstance(value, (dict, list, bool)):
        raise ValidationError('입력값 형식이 올바르지 않습니다.')
    return str(value).strip()


@dataclass
class LineItem:
    product_id: str
    quantity: int
    name: str
    price: int

    @property
    def amount(self):
        return self.price * self.quantity

    def to_dict(self):
        return {
            'productId': self.product_id,
            'quantity': self.quantity,
            'name': self.name,
            'price': self.price,
        }


def summarize_items(items):
    """장부 기록용 문자열: '이름 x 수량, 이름 x 수량'"""
    return ', '.join(f'{item.name} x {item.quantity}' for item in items)


@dataclass
class Order:
    id: str
    created_at: str
    customer_name: str
    customer_phone: str
    total_amount: int
    status: str = PENDING
    customer_email: str = ''
    address: str = ''
    request: str = ''
    # 생성 직후에는 LineItem 목록, 장부에서 읽으면 요약 문자열
    products: list = field(default_factory=list)
    payment_key: str = ''
    cancel_reason: str = ''
    cancelled_at: str = ''

    @property
    def products_summary(self):
        if isinstance(self.products, str):
            return self.products
        return summarize_items(self.products)

    def to_dict(self):
        products = self.products
        if not isinstance(products, str):
            products = [item.to_dict() for item in products]
        return {
            'id': self.id,
            'createdAt': self.created_at,
            'customerName': self.customer_name,
            'customerPhone': self.customer_phone,
            'customerEmail': self.customer_email,
            'address': self.address,
            'request': self.request,
            'products': products,
            'totalAmount': self.total_amount,
            'status': self.status,
            'statusLabel': STATUS_LABELS.get(self.status, self.status),
            'paymentKey': self.payment_key,
            'cancelReason': self.cancel_reason,
            'cancelledAt': self.cancelled_at,
        }

    def to_public_dict(self):
        """비로그인 고객 조회용 - 결제키 대신 보유 여부만 노출"""
        data = self.to_dict()
        data.pop('paymentKey')
        data['hasPaymentKey'] = bool(self.payment_key)
        return data


def price_line_items(requested, catalog_index):
    """요청 품목을 현재 상품 가격으로 다시 계산

    카탈로그에 없는 상품은 조용히 제외한다. 클라이언트가 보낸 가격은 쓰지 않는다.
    """
    items = []
    for entry in requested:
        if not isinstance(entry, dict):
            raise ValidationError('잘못된 주문 상품 형식입니다.')
        quantity = to_int(entry.get('quantity'), '수량')
        if quantity <= 0:
            raise ValidationError('수량은 1개 이상이어야 합니다.')
        product = catalog_index.get(entry.get('productId'))
        if product is None:
            logger.warning(f"⚠️ 카탈로그에 없는 상품 제외: {entry.get('productId')}")
            continue
        items.append(LineItem(product_id=product.id, quantity=quantity,
                              name=product.name, price=product.price))
    return items, sum(item.amount for item in items)


class OrderService:
    """주문 생성 / 상태 변경 / 고객 취소"""

    def __init__(self, ledger, catalog, payments, allow_any_transition=False,
                 auto_cancel_on_save_failure=True):
        self.ledger = ledger
        self.catalog = catalog
        self.payments = payments
        self.allow_any_transition = allow_any_transition
        self.auto_cancel_on_save_failure = auto_cancel_on_save_failure

    def create_order(self, data):
        """주문 기록 - (order, created) 반환

        같은 결제 주문번호로 다시 들어온 요청은 새로 기록하지 않는다.
        결제키까지 같으면 기존 주문을 그대로 돌려주고, 다르면 충돌로 거절한다.
        """
        customer_name = text_field(data, 'customerName')
        customer_phone = text_field(data, 'customerPhone')
        requested = data.get('products') or []
        if not customer_name or not customer_phone or not requested:
            raise ValidationError('필수 정보를 입력해주세요.')
        if not isinstance(requested, list):
            raise ValidationError('잘못된 주문 상품 형식입니다.')
        if len(normalize_phone(customer_phone)) < 10:
            raise ValidationError('올바른 전화번호를 입력해주세요.')

        order_id = text_field(data, 'orderId')
        payment_key = text_field(data, 'paymentKey')
        if order_id:
            existing = self._find_existing(order_id)
            if existing is not None:
                if payment_key and existing.payment_key == payment_key:
                    logger.info(f"ℹ️ 이미 기록된 주문 재요청: {order_id}")
                    return existing, False
                logger.warning(f"⚠️ 주문번호 중복: {order_id}")
                raise ConflictError('이미 사용된 주문번호입니다.')

        items, total = price_line_items(requested, self.catalog.price_index())
        if not items:
            logger.warning("⚠️ 유효한 상품이 없는 주문 (합계 0원)")

        order = Order(
            id=order_id or generate_order_id(),
            created_at=format_kst(now_kst()),
            customer_name=customer_name,
            customer_phone=customer_phone,
            customer_email=text_field(data, 'customerEmail'),
            address=text_field(data, 'address'),
            request=text_field(data, 'request'),
            products=items,
            total_amount=total,
            status=PENDING,
            payment_key=payment_key,
        )

        if self.ledger.append_order(order):
            logger.info(f"✅ 주문 저장: {order.id} ({order.total_amount}원)")
            return order, True

        if not order.payment_key:
            raise LedgerError('주문 저장에 실패했습니다.')
        self._compensate_unsaved_payment(order)

    def _find_existing(self, order_id):
        # 조회가 안 되면 기록을 시도하고, 기록 실패 시 보상 취소 경로로 넘어간다
        try:
            return self.ledger.get_order_by_id(order_id)
        except LedgerError as e:
            logger.warning(f"⚠️ 기존 주문 조회 실패, 기록 진행: {order_id} ({e.message})")
            return None

    def _compensate_unsaved_payment(self, order):
        """결제는 승인됐는데 주문 기록이 실패한 경우"""
        logger.critical(f"❌ 결제 승인 후 주문 저장 실패: order={order.id} paymentKey={order.payment_key}")
        if self.auto_cancel_on_save_failure:
            try:
                self.payments.cancel(order.payment_key, SAVE_FAILURE_CANCEL_REASON)
            except PaymentError as e:
                logger.critical(f"❌ 자동 결제 취소 실패, 수동 확인 필요: order={order.id} ({e.message})")
            else:
                logger.warning(f"⚠️ 자동 결제 취소 완료: order={order.id}")
                raise ConsistencyError(
                    '주문 저장에 실패하여 결제가 자동 취소되었습니다. 다시 시도해주세요.',
                    code='ORDER_SAVE_FAILED', orderId=order.id,
                    paymentConfirmed=True, paymentCancelled=True)
        raise ConsistencyError(
            '결제는 완료되었으나 주문 저장에 실패했습니다. 관리자에게 문의해주세요.',
            code='ORDER_SAVE_FAILED', orderId=order.id,
            paymentConfirmed=True, paymentCancelled=False)

    def get_order(self, order_id):
        order = self.ledger.get_order_by_id(order_id)
        if order is None:
            raise NotFoundError('주문을 찾을 수 없습니다.')
        return order

    def list_orders(self):
        return self.ledger.get_all_orders()

    def search_by_phone(self, phone):
        if not phone:
            raise ValidationError('전화번호를 입력해주세요.')
        if len(normalize_phone(phone)) < 10:
            raise ValidationError('올바른 전화번호를 입력해주세요.')
        return self.ledger.get_orders_by_phone(phone)

    def update_status(self, order_id, status, cancel_reason=None):
        """관리자 상태 변경"""
        status = (status or '').strip()
        if not status:
            raise ValidationError('상태를 입력해주세요.')
        if status not in STATUSES:
            raise ValidationError('유효하지 않은 상태입니다.')

        order = self.get_order(order_id)
        if not self.allow_any_transition and not can_transition(order.status, status):
            raise IllegalTransitionError(
                f'{STATUS_LABELS.get(order.status, order.status)} 상태에서 '
                f'{STATUS_LABELS[status]}(으)로 변경할 수 없습니다.')

        payment_cancelled = False
        if status == CANCELLED:
            cancel_reason = (cancel_reason or '').strip() or ADMIN_CANCEL_REASON
            if order.payment_key:
                self.payments.cancel(order.payment_key, cancel_reason)
                payment_cancelled = True
        else:
            cancel_reason = None

        self._write_status(order, status, cancel_reason, payment_cancelled)
        return order

    def cancel_by_customer(self, order_id, cancel_reason):
        """고객 셀프 취소 - 결제키가 있는 대기 주문만"""
        if not order_id or not cancel_reason:
            raise ValidationError('orderId와 cancelReason은 필수입니다.')

        order = self.get_order(order_id)
        if order.status == CANCELLED:
            raise ValidationError('이미 취소된 주문입니다.')
        if order.status != PENDING:
            raise ValidationError('대기 중인 주문만 취소할 수 있습니다.')
        if not order.payment_key:
            raise ValidationError('결제 정보가 없어 취소할 수 없습니다. 고객센터에 문의해주세요.')

        self.payments.cancel(order.payment_key, cancel_reason)
        self._write_status(order, CANCELLED, cancel_reason, payment_cancelled=True)
        return order

    def _write_status(self, order, status, cancel_reason, payment_cancelled):
        if self.ledger.update_order_status(order.id, status, cancel_reason):
            order.status = status
            if cancel_reason:
                order.cancel_reason = cancel_reason
                order.cancelled_at = format_kst(now_kst())
            logger.info(f"✅ 주문 상태 변경: {order.id} → {status}")
            return
        if payment_cancelled:
            logger.critical(f"❌ 결제 취소 후 장부 갱신 실패, 수동 확인 필요: order={order.id}")
            raise ConsistencyError(
                '결제는 취소되었으나 주문 상태 업데이트에 실패했습니다. 관리자에게 문의해주세요.',
                code='LEDGER_UPDATE_FAILED', orderId=order.id,
                paymentCancelled=True, ledgerUpdated=False)
        raise LedgerError('주문 상태 업데이트에 실패했습니다.')
