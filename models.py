from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, timedelta, timezone
import json

db = SQLAlchemy()

# KST(UTC+9) 기준 시간 헬퍼
KST = timezone(timedelta(hours=9))
def now_kst():
    return datetime.now(KST)

# 장부에 기록하는 표시용 시각 (예: 2025-01-05 15:04:05)
def format_kst(kst_datetime):
    if not kst_datetime:
        return ''
    return kst_datetime.astimezone(KST).strftime('%Y-%m-%d %H:%M:%S')


class LedgerSetting(db.Model):
    """단일 값 설정 (관리자 비밀번호, 사업자 정보, 회원 검증 여부)"""
    __tablename__ = 'ledger_settings'

    key = db.Column(db.String(50), primary_key=True)
    value = db.Column(db.Text, nullable=False, default='')
    updated_at = db.Column(db.DateTime, default=now_kst, onupdate=now_kst)

    def json_value(self):
        try:
            return json.loads(self.value) if self.value else None
        except ValueError:
            return None


class LedgerProduct(db.Model):
    """상품 백업 테이블 - 전체 교체 방식으로만 갱신"""
    __tablename__ = 'ledger_products'

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.String(50), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default='')
    price = db.Column(db.Integer, nullable=False, default=0)
    image_url = db.Column(db.String(500), default='')
    category = db.Column(db.String(50), default='기타')
    weight = db.Column(db.Integer)
    available = db.Column(db.Boolean, default=True)
    display_order = db.Column(db.Integer, default=0)
    detail_page_url = db.Column(db.Text, default='')

    def to_dict(self):
        return {
            'id': self.product_id,
            'name': self.name,
            'description': self.description or '',
            'price': self.price,
            'imageUrl': self.image_url or '',
            'category': self.category or '기타',
            'weight': self.weight,
            'available': bool(self.available),
            'displayOrder': self.display_order or 0,
            'detailPageUrl': self.detail_page_url or '',
        }


class OrderRecord(db.Model):
    __tablename__ = 'orders'

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(64), unique=True, nullable=False)
    created_at = db.Column(db.String(30), nullable=False)  # KST 표시 문자열
    customer_name = db.Column(db.String(100), nullable=False)
    customer_phone = db.Column(db.String(30), nullable=False)
    customer_email = db.Column(db.String(120), default='')
    address = db.Column(db.Text, default='')
    products = db.Column(db.Text, default='')  # '이름 x 수량, ...' 요약 문자열
    total_amount = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(20), default='pending')
    request = db.Column(db.Text, default='')
    payment_key = db.Column(db.String(200), default='')
    cancel_reason = db.Column(db.Text, default='')
    cancelled_at = db.Column(db.String(30), default='')


class Member(db.Model):
    __tablename__ = 'members'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    member_id = db.Column(db.String(10), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=now_kst)

    def to_dict(self):
        return {'name': self.name, 'memberId': self.member_id}
