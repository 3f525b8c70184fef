"""주문 장부 저장소 인터페이스

스프레드시트(sheets)와 DB(sql) 백엔드가 같은 계약을 구현한다.
- 조회 실패: 로그 후 LedgerError 발생
- 쓰기 실패: 로그 후 False 반환 (재시도 여부는 호출자가 판단)
재시도/백오프는 없다.
"""
import logging
from abc import ABC, abstractmethod
from functools import wraps

from errors import LedgerError
from orders import normalize_phone

logger = logging.getLogger(__name__)

BACKENDS = ('sheets', 'sql')

BUSINESS_INFO_FIELDS = (
    'businessName',
    'representative',
    'businessLicense',
    'address',
    'phone',
    'email',
    'ecommerceLicense',
    'kakaoUrl',
)


def ledger_read(f):
    """조회 실패를 LedgerError 로 변환"""
    @wraps(f)
    def decorated(self, *args, **kwargs):
        try:
            return f(self, *args, **kwargs)
        except LedgerError:
            raise
        except self.failures as e:
            logger.error(f"❌ 장부 조회 실패 ({f.__name__}): {e}")
            raise LedgerError() from e
    return decorated


def ledger_write(f):
    """쓰기 실패를 False 로 변환"""
    @wraps(f)
    def decorated(self, *args, **kwargs):
        try:
            return f(self, *args, **kwargs)
        except (LedgerError,) + tuple(self.failures) as e:
            logger.error(f"❌ 장부 쓰기 실패 ({f.__name__}): {e}")
            return False
    return decorated


def normalize_business_info(info):
    info = info or {}
    return {key: str(info.get(key) or '').strip() for key in BUSINESS_INFO_FIELDS}


class OrderLedger(ABC):
    # 백엔드별로 '원격 저장소 실패'로 간주할 예외
    failures = ()

    # ---- 관리자 비밀번호
    @abstractmethod
    def get_password(self): ...

    @abstractmethod
    def update_password(self, new_password): ...

    # ---- 사업자 정보
    @abstractmethod
    def get_business_info(self): ...

    @abstractmethod
    def update_business_info(self, info): ...

    # ---- 상품 백업 (전체 교체)
    @abstractmethod
    def get_all_products(self): ...

    @abstractmethod
    def update_all_products(self, products): ...

    # ---- 주문
    @abstractmethod
    def append_order(self, order): ...

    @abstractmethod
    def get_all_orders(self):
        """최신 주문이 먼저 오는 전체 목록"""

    @abstractmethod
    def update_order_status(self, order_id, status, cancel_reason=None): ...

    # ---- 회원
    @abstractmethod
    def get_members(self): ...

    @abstractmethod
    def add_member(self, name, member_id): ...

    @abstractmethod
    def get_member_validation(self): ...

    @abstractmethod
    def set_member_validation(self, enabled): ...

    def get_order_by_id(self, order_id):
        for order in self.get_all_orders():
            if order.id == order_id:
                return order
        return None

    def get_orders_by_phone(self, phone):
        """전화번호(숫자만 비교)로 주문 조회 - 비로그인 경로라 결제키는 제외"""
        target = normalize_phone(phone)
        return [order.to_public_dict() for order in self.get_all_orders()
                if target and normalize_phone(order.customer_phone) == target]


def new_ledger(backend, **options):
    backend = (backend or 'sheets').lower()
    if backend == 'sql':
        from ledger_sql import SqlLedger
        return SqlLedger(options['db'])
    if backend == 'sheets':
        from ledger_sheets import SheetsLedger
        return SheetsLedger(
            sheet_id=options.get('sheet_id'),
            service_account=options.get('service_account'),
        )
    raise ValueError(f'unknown ledger backend: {backend}')
