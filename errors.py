"""API 오류 분류

서비스 계층에서 발생시키고 app.py 의 errorhandler 가 JSON 응답으로 변환한다.
"""


class StoreError(Exception):
    status_code = 500
    default_message = '요청을 처리하지 못했습니다.'

    def __init__(self, message=None, status_code=None, code=None, **extra):
        self.message = message or self.default_message
        super().__init__(self.message)
        if status_code is not None:
            self.status_code = status_code
        self.code = code
        self.extra = extra

    def to_dict(self):
        body = {'success': False, 'message': self.message}
        if self.code:
            body['code'] = self.code
        body.update(self.extra)
        return body


class ValidationError(StoreError):
    status_code = 400
    default_message = '필수 정보를 입력해주세요.'


class AuthError(StoreError):
    status_code = 401
    default_message = '인증이 필요합니다.'


class NotFoundError(StoreError):
    status_code = 404
    default_message = '요청한 항목을 찾을 수 없습니다.'


class ConflictError(StoreError):
    status_code = 409
    default_message = '이미 존재하는 항목입니다.'


class IllegalTransitionError(ConflictError):
    default_message = '허용되지 않는 주문 상태 변경입니다.'


class LedgerError(StoreError):
    """장부(스프레드시트/DB) 읽기/쓰기 실패"""
    default_message = '주문 장부 처리 중 오류가 발생했습니다.'


class ExternalServiceError(StoreError):
    status_code = 502
    default_message = '외부 서비스 응답을 받지 못했습니다.'


class PaymentError(StoreError):
    """결제사 API 오류 - 결제사 메시지를 그대로 전달"""
    status_code = 502
    default_message = '결제 처리 중 오류가 발생했습니다.'

    def __init__(self, message=None, status_code=None, code=None, body=None):
        super().__init__(message, status_code=status_code, code=code)
        self.body = body or {}


class ConsistencyError(StoreError):
    """결제사와 장부 상태가 어긋난 경우 (수동 확인 필요)"""
    default_message = '결제와 주문 상태가 일치하지 않습니다. 관리자에게 문의해주세요.'
