import logging
from abc import ABC, abstractmethod

import requests

from errors import PaymentError, StoreError

logger = logging.getLogger(__name__)

TOSS_API_URL = 'https://api.tosspayments.com/v1'


# ----------------------------
# Payment provider interface
# ----------------------------
class PaymentProvider(ABC):
    @abstractmethod
    def confirm(self, payment_key, order_id, amount) -> dict:
        """결제 승인. 실패 시 PaymentError"""

    @abstractmethod
    def cancel(self, payment_key, cancel_reason) -> dict:
        """결제 전액 취소. 실패 시 PaymentError"""


# ----------------------------
# Toss Payments implementation
# ----------------------------
class TossPayments(PaymentProvider):
    """토스페이먼츠 결제 승인/취소 (시크릿 키 Basic 인증)"""

    def __init__(self, secret_key, api_url=TOSS_API_URL, timeout=10):
        self.secret_key = secret_key
        self.api_url = api_url.rstrip('/')
        self.timeout = timeout

    def _post(self, path, payload):
        if not self.secret_key:
            raise StoreError('결제 시스템 설정 오류입니다. 관리자에게 문의해주세요.')
        url = f'{self.api_url}{path}'
        logger.info(f"📡 결제사 호출: {path}")
        try:
            # Basic 인증: '시크릿키:' 를 base64 인코딩 (비밀번호 없음)
            response = requests.post(url, json=payload, auth=(self.secret_key, ''),
                                     timeout=self.timeout)
        except requests.exceptions.Timeout:
            raise PaymentError('결제 서버 응답 시간 초과', status_code=504)
        except requests.exceptions.RequestException as e:
            logger.error(f"❌ 결제사 네트워크 오류: {e}")
            raise PaymentError(f'네트워크 오류: {e}', status_code=502)

        try:
            result = response.json()
        except ValueError:
            result = {}

        if not response.ok:
            logger.error(f"❌ 결제사 오류 {response.status_code}: {result}")
            raise PaymentError(result.get('message') or '결제 처리 중 오류가 발생했습니다.',
                               status_code=response.status_code,
                               code=result.get('code'), body=result)
        return result

    def confirm(self, payment_key, order_id, amount):
        return self._post('/payments/confirm', {
            'paymentKey': payment_key,
            'orderId': order_id,
            'amount': int(amount),
        })

    def cancel(self, payment_key, cancel_reason):
        return self._post(f'/payments/{payment_key}/cancel', {'cancelReason': cancel_reason})
