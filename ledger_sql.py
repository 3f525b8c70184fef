import json
import logging

from sqlalchemy.exc import SQLAlchemyError

from catalog import Product, sort_products
from ledger import OrderLedger, ledger_read, ledger_write, normalize_business_info
from models import LedgerProduct, LedgerSetting, Member, OrderRecord, format_kst, now_kst
from orders import Order

logger = logging.getLogger(__name__)

ADMIN_PASSWORD_KEY = 'admin_password'
BUSINESS_INFO_KEY = 'business_info'
MEMBER_VALIDATION_KEY = 'member_validation'


def record_to_order(record):
    return Order(
        id=record.order_id,
        created_at=record.created_at,
        customer_name=record.customer_name,
        customer_phone=record.customer_phone,
        customer_email=record.customer_email or '',
        address=record.address or '',
        products=record.products or '',
        total_amount=record.total_amount or 0,
        status=record.status or 'pending',
        request=record.request or '',
        payment_key=record.payment_key or '',
        cancel_reason=record.cancel_reason or '',
        cancelled_at=record.cancelled_at or '',
    )


class SqlLedger(OrderLedger):
    """Flask-SQLAlchemy 테이블을 장부로 사용 (앱 컨텍스트 안에서 호출)"""

    failures = (SQLAlchemyError,)

    def __init__(self, db):
        self.db = db

    def _commit(self):
        try:
            self.db.session.commit()
        except SQLAlchemyError:
            self.db.session.rollback()
            raise

    def bootstrap(self, default_password):
        """테이블 생성 직후 기본 관리자 비밀번호를 심어둔다"""
        if self.db.session.get(LedgerSetting, ADMIN_PASSWORD_KEY) is None:
            self.db.session.add(LedgerSetting(key=ADMIN_PASSWORD_KEY, value=default_password))
            self._commit()
            logger.info("✅ 기본 관리자 비밀번호 생성")

    def _get_setting(self, key):
        return self.db.session.get(LedgerSetting, key)

    def _set_setting(self, key, value):
        setting = self._get_setting(key)
        if setting is None:
            setting = LedgerSetting(key=key)
            self.db.session.add(setting)
        setting.value = value
        self._commit()

    # ---- 관리자 비밀번호
    @ledger_read
    def get_password(self):
        setting = self._get_setting(ADMIN_PASSWORD_KEY)
        return setting.value.strip() if setting else None

    @ledger_write
    def update_password(self, new_password):
        self._set_setting(ADMIN_PASSWORD_KEY, '' if new_password is None else str(new_password).strip())
        return True

    # ---- 사업자 정보
    @ledger_read
    def get_business_info(self):
        setting = self._get_setting(BUSINESS_INFO_KEY)
        return setting.json_value() if setting else None

    @ledger_write
    def update_business_info(self, info):
        self._set_setting(BUSINESS_INFO_KEY, json.dumps(normalize_business_info(info), ensure_ascii=False))
        return True

    # ---- 상품
    @ledger_read
    def get_all_products(self):
        rows = LedgerProduct.query.order_by(LedgerProduct.display_order, LedgerProduct.id).all()
        return [Product.from_dict(row.to_dict()) for row in rows]

    @ledger_write
    def update_all_products(self, products):
        LedgerProduct.query.delete()
        for product in sort_products(products):
            self.db.session.add(LedgerProduct(
                product_id=product.id,
                name=product.name,
                description=product.description,
                price=product.price,
                image_url=product.image_url,
                category=product.category,
                weight=product.weight,
                available=bool(product.available),
                display_order=product.display_order,
                detail_page_url=product.detail_page_url,
            ))
        self._commit()
        logger.info(f"✅ 상품 {len(products)}개 DB 백업")
        return True

    # ---- 주문
    @ledger_write
    def append_order(self, order):
        self.db.session.add(OrderRecord(
            order_id=order.id,
            created_at=order.created_at,
            customer_name=order.customer_name,
            customer_phone=order.customer_phone,
            customer_email=order.customer_email,
            address=order.address,
            products=order.products_summary,
            total_amount=order.total_amount,
            status=order.status,
            request=order.request,
            payment_key=order.payment_key,
            cancel_reason=order.cancel_reason,
            cancelled_at=order.cancelled_at,
        ))
        self._commit()
        return True

    @ledger_read
    def get_all_orders(self):
        records = OrderRecord.query.order_by(OrderRecord.id.desc()).all()
        return [record_to_order(r) for r in records]

    @ledger_read
    def get_order_by_id(self, order_id):
        record = OrderRecord.query.filter_by(order_id=order_id).first()
        return record_to_order(record) if record else None

    @ledger_write
    def update_order_status(self, order_id, status, cancel_reason=None):
        record = OrderRecord.query.filter_by(order_id=order_id).first()
        if record is None:
            logger.warning(f"⚠️ 장부에서 주문을 찾을 수 없음: {order_id}")
            return False
        record.status = status
        if cancel_reason:
            record.cancel_reason = cancel_reason
            record.cancelled_at = format_kst(now_kst())
        self._commit()
        return True

    # ---- 회원
    @ledger_read
    def get_members(self):
        return [m.to_dict() for m in Member.query.order_by(Member.id).all()]

    @ledger_write
    def add_member(self, name, member_id):
        self.db.session.add(Member(name=name, member_id=member_id))
        self._commit()
        return True

    @ledger_read
    def get_member_validation(self):
        setting = self._get_setting(MEMBER_VALIDATION_KEY)
        return setting is None or setting.value == 'true'

    @ledger_write
    def set_member_validation(self, enabled):
        self._set_setting(MEMBER_VALIDATION_KEY, 'true' if enabled else 'false')
        return True
