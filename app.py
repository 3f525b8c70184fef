from flask import Flask, request, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
import hmac
import logging
import os
import traceback
from datetime import datetime, timedelta, timezone
from functools import wraps
import bcrypt
import jwt

import storage
from cache import TTLCache
from catalog import Catalog, detail_reference
from content import PageBook, load_intro_content, move_intro_block, save_intro_content
from errors import (AuthError, ConflictError, LedgerError, NotFoundError, PaymentError,
                    StoreError, ValidationError)
from ledger import new_ledger, normalize_business_info
from models import db
from notion import NotionClient
from orders import OrderService
from payments import TOSS_API_URL, TossPayments

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)

app = Flask(__name__)


def env_flag(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


# ========== 기본 설정 (환경변수로 덮어쓰기) ==========
app.config['DATA_DIR'] = os.environ.get('DATA_DIR', os.path.join(os.path.dirname(__file__), 'data'))
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
app.config['JWT_SECRET_KEY'] = os.environ.get('JWT_SECRET_KEY', app.config['SECRET_KEY'])
app.config['JWT_EXPIRATION_HOURS'] = int(os.environ.get('JWT_EXPIRATION_HOURS', 24))
app.config['AUTH_COOKIE_SECURE'] = env_flag('SESSION_COOKIE_SECURE')

# 주문 장부: sheets(구글 시트) 또는 sql(DB)
app.config['LEDGER_BACKEND'] = os.environ.get('LEDGER_BACKEND', 'sheets').lower()
app.config['GOOGLE_SHEET_ID'] = os.environ.get('GOOGLE_SHEET_ID', '')
app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///store.db')
if app.config['SQLALCHEMY_DATABASE_URI'].startswith('postgres://'):
    app.config['SQLALCHEMY_DATABASE_URI'] = app.config['SQLALCHEMY_DATABASE_URI'].replace('postgres://', 'postgresql://', 1)
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

# ========== 토스페이먼츠 결제 설정 ==========
app.config['TOSS_SECRET_KEY'] = os.environ.get('TOSS_SECRET_KEY', '')
app.config['TOSS_API_URL'] = os.environ.get('TOSS_API_URL', TOSS_API_URL)
app.config['PAYMENT_TIMEOUT'] = float(os.environ.get('PAYMENT_TIMEOUT', 10))
# 결제 승인 후 주문 저장 실패 시 결제 자동 취소
app.config['AUTO_CANCEL_ON_SAVE_FAILURE'] = env_flag('AUTO_CANCEL_ON_SAVE_FAILURE', True)
# true 면 관리자가 어떤 상태로든 변경 가능 (상태 전이 검사 생략)
app.config['ALLOW_ANY_STATUS_TRANSITION'] = env_flag('ALLOW_ANY_STATUS_TRANSITION')

# ========== 노션 (상품 상세 페이지) ==========
app.config['NOTION_API_KEY'] = os.environ.get('NOTION_API_KEY', '')
app.config['NOTION_VERSION'] = os.environ.get('NOTION_VERSION', '2022-06-28')
app.config['NOTION_CACHE_SIZE'] = int(os.environ.get('NOTION_CACHE_SIZE', 256))
app.config['NOTION_CACHE_TTL'] = int(os.environ.get('NOTION_CACHE_TTL', 600))

# CORS 설정 - 기본은 전체 허용(개발 편의), 배포 시 ALLOWED_ORIGINS 환경변수로 제한
allowed_origins = os.environ.get('ALLOWED_ORIGINS', '*').split(',')
CORS(app, resources={r"/api/*": {"origins": allowed_origins}})

db.init_app(app)

AUTH_COOKIE = 'auth_token'
HOMEPAGE_DEFAULTS = {'displayProducts': True, 'selectedProducts': []}


# ========== 비밀번호 ==========
def hash_password(password):
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')


def check_password(password, stored):
    """bcrypt 해시 또는 (시트에 직접 입력한) 평문 비밀번호와 비교"""
    if not password or not stored:
        return False
    if stored.startswith(('$2a$', '$2b$', '$2y$')):
        try:
            return bcrypt.checkpw(password.encode('utf-8'), stored.encode('utf-8'))
        except ValueError:
            return False
    return hmac.compare_digest(password.encode('utf-8'), stored.encode('utf-8'))


# ========== 서비스 구성 ==========
def register_services(flask_app, store, ledger, payments, notion_client):
    """요청 핸들러가 사용하는 서비스를 app.extensions 에 등록"""
    catalog = Catalog(store)
    flask_app.extensions.update({
        'store': store,
        'ledger': ledger,
        'payments': payments,
        'catalog': catalog,
        'pages': PageBook(store),
        'notion': notion_client,
        'orders': OrderService(
            ledger, catalog, payments,
            allow_any_transition=flask_app.config['ALLOW_ANY_STATUS_TRANSITION'],
            auto_cancel_on_save_failure=flask_app.config['AUTO_CANCEL_ON_SAVE_FAILURE'],
        ),
    })


def service(name):
    return app.extensions[name]


register_services(
    app,
    store=storage.JsonStore(app.config['DATA_DIR']),
    ledger=new_ledger(
        app.config['LEDGER_BACKEND'],
        db=db,
        sheet_id=app.config['GOOGLE_SHEET_ID'],
        service_account={
            'client_email': os.environ.get('GOOGLE_CLIENT_EMAIL', ''),
            'private_key': os.environ.get('GOOGLE_PRIVATE_KEY', ''),
            'project_id': os.environ.get('GOOGLE_PROJECT_ID'),
        },
    ),
    payments=TossPayments(
        app.config['TOSS_SECRET_KEY'],
        api_url=app.config['TOSS_API_URL'],
        timeout=app.config['PAYMENT_TIMEOUT'],
    ),
    notion_client=NotionClient(
        app.config['NOTION_API_KEY'],
        TTLCache(maxsize=app.config['NOTION_CACHE_SIZE'], ttl=app.config['NOTION_CACHE_TTL']),
        version=app.config['NOTION_VERSION'],
    ),
)

# DB 장부 사용 시 테이블 생성 + 기본 관리자 비밀번호
if app.config['LEDGER_BACKEND'] == 'sql':
    with app.app_context():
        db.create_all()
        service('ledger').bootstrap(hash_password(os.environ.get('ADMIN_DEFAULT_PASSWORD', 'admin1234')))


# ========== JWT 유틸리티 함수 ==========
def create_token():
    """JWT 토큰 생성"""
    now = datetime.now(timezone.utc)
    payload = {
        'role': 'admin',
        'exp': now + timedelta(hours=app.config['JWT_EXPIRATION_HOURS']),
        'iat': now,
    }
    return jwt.encode(payload, app.config['JWT_SECRET_KEY'], algorithm='HS256')


def verify_token(token):
    """JWT 토큰 검증"""
    try:
        payload = jwt.decode(token, app.config['JWT_SECRET_KEY'], algorithms=['HS256'])
        return payload
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def request_token():
    token = request.cookies.get(AUTH_COOKIE)
    # Authorization 헤더 ("Bearer <token>") 도 허용
    auth_header = request.headers.get('Authorization', '')
    if not token and auth_header.startswith('Bearer '):
        token = auth_header.split(' ', 1)[1].strip()
    return token


def admin_required(f):
    """관리자 인증 데코레이터"""
    @wraps(f)
    def decorated(*args, **kwargs):
        token = request_token()
        if not token:
            return jsonify({'success': False, 'message': '인증이 필요합니다.'}), 401

        payload = verify_token(token)
        if not payload or payload.get('role') != 'admin':
            return jsonify({'success': False, 'message': '유효하지 않거나 만료된 토큰입니다.'}), 401

        return f(*args, **kwargs)

    return decorated


def json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return {}
    return data


# ========== 오류 처리 ==========
@app.errorhandler(StoreError)
def handle_store_error(e):
    body = e.to_dict()
    if isinstance(e, PaymentError) and e.body:
        # 결제사 응답(code/message)을 그대로 전달
        body = {**e.body, **body}
    if e.status_code >= 500:
        app.logger.error(f"❌ {type(e).__name__}: {e.message}")
    return jsonify(body), e.status_code


@app.errorhandler(Exception)
def handle_exception(e):
    if isinstance(e, HTTPException):
        return jsonify({'success': False, 'message': e.description}), e.code
    app.logger.error(f"❌ 처리되지 않은 오류: {e}\n{traceback.format_exc()}")
    return jsonify({'success': False, 'message': '서버 오류가 발생했습니다.'}), 500


# ========== 관리자 인증 ==========
@app.route('/api/auth/verify-admin', methods=['POST'])
def verify_admin():
    password = json_body().get('password')
    if isinstance(password, str):
        password = password.strip()
    if not password:
        raise ValidationError('비밀번호를 입력해주세요.')

    stored = service('ledger').get_password()
    if not stored:
        raise StoreError('비밀번호를 불러올 수 없습니다.')

    if not check_password(password, stored):
        app.logger.warning("⚠️ 관리자 로그인 실패")
        return jsonify({'success': False, 'isValid': False, 'message': '비밀번호가 틀렸습니다.'}), 401

    response = jsonify({'success': True, 'isValid': True})
    response.set_cookie(
        AUTH_COOKIE,
        create_token(),
        max_age=app.config['JWT_EXPIRATION_HOURS'] * 3600,
        httponly=True,
        secure=app.config['AUTH_COOKIE_SECURE'],
        samesite='Strict',
        path='/',
    )
    return response


@app.route('/api/auth/check-auth', methods=['GET'])
def check_auth():
    token = request_token()
    payload = verify_token(token) if token else None
    if not payload:
        return jsonify({'success': False, 'isAuthenticated': False}), 401
    return jsonify({'success': True, 'isAuthenticated': True, 'user': {'role': payload.get('role')}})


@app.route('/api/auth/logout', methods=['POST'])
def logout():
    response = jsonify({'success': True, 'message': '로그아웃되었습니다.'})
    response.delete_cookie(AUTH_COOKIE, path='/', samesite='Strict',
                           secure=app.config['AUTH_COOKIE_SECURE'], httponly=True)
    return response


@app.route('/api/auth/change-password', methods=['POST'])
@admin_required
def change_password():
    data = json_body()
    current_password = data.get('currentPassword')
    new_password = (data.get('newPassword') or '').strip()
    if not current_password or not new_password:
        raise ValidationError('모든 필드를 입력해주세요.')

    ledger = service('ledger')
    if not check_password(current_password.strip(), ledger.get_password()):
        raise AuthError('현재 비밀번호가 일치하지 않습니다.')

    if not ledger.update_password(hash_password(new_password)):
        raise LedgerError('비밀번호 변경 중 오류가 발생했습니다.')
    app.logger.info("✅ 관리자 비밀번호 변경")
    return jsonify({'success': True, 'message': '비밀번호가 변경되었습니다.'})


# ========== 상품 ==========
@app.route('/api/products', methods=['GET'])
def list_products():
    products = service('catalog').list()
    return jsonify({'success': True, 'products': [p.to_dict() for p in products]})


@app.route('/api/products', methods=['POST'])
@admin_required
def create_product():
    product = service('catalog').create(json_body())
    return jsonify({'success': True, 'product': product.to_dict()}), 201


@app.route('/api/products/reorder', methods=['PUT'])
@admin_required
def reorder_products():
    products = service('catalog').reorder(request.get_json(silent=True))
    return jsonify({
        'success': True,
        'message': '순서가 변경되었습니다.',
        'products': [p.to_dict() for p in products],
    })


@app.route('/api/products/backup-to-sheet', methods=['POST'])
@admin_required
def backup_products():
    products = service('catalog').list()
    if not service('ledger').update_all_products(products):
        raise LedgerError('구글 시트 백업 실패')
    return jsonify({'success': True, 'message': '구글 시트에 백업 완료', 'count': len(products)})


@app.route('/api/products/sync-from-sheet', methods=['POST'])
@admin_required
def sync_products():
    products = service('catalog').replace_all(service('ledger').get_all_products())
    return jsonify({
        'success': True,
        'message': '구글 시트에서 불러오기 완료',
        'products': [p.to_dict() for p in products],
    })


@app.route('/api/products/<product_id>', methods=['GET'])
def get_product(product_id):
    product = service('catalog').get(product_id)
    if not product:
        raise NotFoundError('상품을 찾을 수 없습니다.')
    return jsonify({'success': True, 'product': product.to_dict()})


@app.route('/api/products/<product_id>', methods=['PUT'])
@admin_required
def update_product(product_id):
    product = service('catalog').update(product_id, json_body())
    return jsonify({'success': True, 'product': product.to_dict()})


@app.route('/api/products/<product_id>', methods=['DELETE'])
@admin_required
def delete_product(product_id):
    service('catalog').delete(product_id)
    return jsonify({'success': True, 'message': '상품이 삭제되었습니다.'})


@app.route('/api/products/<product_id>/detail', methods=['GET'])
def get_product_detail(product_id):
    """상품 상세 정보 참조 (이미지 목록 또는 노션 페이지 ID)"""
    product = service('catalog').get(product_id)
    if not product:
        raise NotFoundError('상품을 찾을 수 없습니다.')
    return jsonify({'success': True, 'detail': detail_reference(product.detail_page_url)})


# ========== 동적 페이지 ==========
@app.route('/api/pages', methods=['GET'])
@admin_required
def list_pages():
    return jsonify({'success': True, 'pages': service('pages').list()})


@app.route('/api/pages', methods=['POST'])
@admin_required
def create_page():
    data = json_body()
    page = service('pages').create(data.get('path'), data.get('title'), data.get('sections'))
    return jsonify({'success': True, 'message': '페이지가 생성되었습니다.', 'page': page}), 201


@app.route('/api/pages/<path:page_path>', methods=['GET'])
def get_page(page_path):
    return jsonify({'success': True, 'page': service('pages').get(page_path)})


@app.route('/api/pages/<path:page_path>', methods=['PUT'])
@admin_required
def update_page(page_path):
    page = service('pages').update(page_path, json_body())
    return jsonify({'success': True, 'page': page})


@app.route('/api/pages/<path:page_path>', methods=['DELETE'])
@admin_required
def delete_page(page_path):
    service('pages').delete(page_path)
    return jsonify({'success': True, 'message': '페이지가 삭제되었습니다.'})


# ========== 메인 페이지 설정 ==========
@app.route('/api/homepage-settings', methods=['GET'])
def get_homepage_settings():
    """메인 페이지 설정 조회"""
    stored = service('store').read(storage.HOMEPAGE_SETTINGS, default={})
    settings = dict(HOMEPAGE_DEFAULTS)
    if isinstance(stored, dict):
        settings.update(stored)
    return jsonify({'success': True, 'settings': settings})


@app.route('/api/homepage-settings', methods=['PUT'])
@admin_required
def save_homepage_settings():
    """메인 페이지 설정 저장"""
    data = json_body()
    selected = data.get('selectedProducts') or []
    if not isinstance(selected, list):
        raise ValidationError('잘못된 데이터 형식입니다.')
    settings = {
        'displayProducts': bool(data['displayProducts']) if data.get('displayProducts') is not None else True,
        'selectedProducts': selected,
    }
    if not service('store').write(storage.HOMEPAGE_SETTINGS, settings):
        raise StoreError('설정 저장에 실패했습니다.')
    return jsonify({'success': True, 'settings': settings})


# ========== 소개 페이지 ==========
@app.route('/api/intro-content', methods=['GET'])
def get_intro_content():
    return jsonify({'success': True, 'content': load_intro_content(service('store'))})


@app.route('/api/intro-content', methods=['POST'])
@admin_required
def save_intro():
    document = save_intro_content(service('store'), json_body())
    return jsonify({'success': True, 'message': '성공적으로 저장되었습니다.', 'content': document})


@app.route('/api/intro-content/move', methods=['POST'])
@admin_required
def move_intro():
    data = json_body()
    document = move_intro_block(service('store'), data.get('id'), data.get('direction'))
    return jsonify({'success': True, 'content': document})


# ========== 사업자 정보 ==========
@app.route('/api/business-info', methods=['GET'])
def get_business_info():
    info = service('store').read(storage.BUSINESS_INFO, default={})
    return jsonify({'success': True, 'info': info if isinstance(info, dict) else {}})


@app.route('/api/business-info', methods=['POST'])
@admin_required
def save_business_info():
    info = normalize_business_info(json_body())
    if not service('store').write(storage.BUSINESS_INFO, info):
        raise StoreError('사업자 정보 저장에 실패했습니다.')

    # 구글 시트 백업은 실패해도 로컬 저장은 유지
    sheet_backup = service('ledger').update_business_info(info)
    if not sheet_backup:
        app.logger.warning("⚠️ 사업자 정보 시트 백업 실패 (로컬 저장은 완료)")
    return jsonify({'success': True, 'message': '사업자 정보가 저장되었습니다.',
                    'sheetBackup': sheet_backup})


@app.route('/api/business-info/sync-from-sheet', methods=['POST'])
@admin_required
def sync_business_info():
    info = service('ledger').get_business_info()
    if not info:
        raise NotFoundError('구글 시트에 데이터가 없습니다')
    info = normalize_business_info(info)
    if not service('store').write(storage.BUSINESS_INFO, info):
        raise StoreError('사업자 정보 저장에 실패했습니다.')
    return jsonify({'success': True, 'message': '구글 시트에서 불러오기 완료', 'info': info})


# ========== 주문 ==========
@app.route('/api/orders', methods=['POST'])
def create_order():
    """주문 생성 (공개) - 금액은 서버에서 현재 상품 가격으로 계산"""
    order, created = service('orders').create_order(json_body())
    if not created:
        return jsonify({'success': True, 'message': '이미 접수된 주문입니다.', 'order': order.to_dict()})
    return jsonify({'success': True, 'message': '주문이 접수되었습니다.', 'order': order.to_dict()}), 201


@app.route('/api/orders', methods=['GET'])
@admin_required
def get_orders():
    orders = service('orders').list_orders()
    return jsonify({'success': True, 'orders': [o.to_dict() for o in orders]})


@app.route('/api/orders/search', methods=['GET'])
def search_orders():
    """전화번호로 내 주문 조회 (공개, 결제키 제외)"""
    orders = service('orders').search_by_phone(request.args.get('phone', ''))
    return jsonify({'success': True, 'orders': orders})


@app.route('/api/orders/<order_id>', methods=['GET'])
@admin_required
def get_order_detail(order_id):
    order = service('orders').get_order(order_id)
    return jsonify({'success': True, 'order': order.to_dict()})


@app.route('/api/orders/<order_id>', methods=['PUT'])
@admin_required
def update_order_status(order_id):
    data = json_body()
    order = service('orders').update_status(order_id, data.get('status'), data.get('cancelReason'))
    return jsonify({'success': True, 'message': '주문 상태가 변경되었습니다.', 'order': order.to_dict()})


# ========== 결제 ==========
@app.route('/api/confirm-payment', methods=['POST'])
def confirm_payment():
    """토스페이먼츠 결제 승인 - 금액 검증은 결제사에서 수행"""
    data = json_body()
    payment_key = data.get('paymentKey')
    order_id = data.get('orderId')
    amount = data.get('amount')
    if not payment_key or not order_id or not amount:
        raise ValidationError('paymentKey, orderId, amount 는 필수입니다.')

    try:
        amount = int(amount)
    except (TypeError, ValueError):
        raise ValidationError('결제 금액이 올바르지 않습니다.')

    result = service('payments').confirm(payment_key, order_id, amount)
    app.logger.info(f"✅ 결제 승인: {order_id} ({amount}원)")
    return jsonify({'success': True, 'payment': result})


@app.route('/api/cancel-payment', methods=['POST'])
def cancel_payment():
    """고객 셀프 취소 - 결제키가 있는 대기 주문만"""
    data = json_body()
    order = service('orders').cancel_by_customer(data.get('orderId'), data.get('cancelReason'))
    return jsonify({'success': True, 'message': '주문이 취소되었습니다.', 'orderId': order.id})


# ========== 회원 ==========
@app.route('/api/members', methods=['GET'])
@admin_required
def list_members():
    return jsonify({'success': True, 'members': service('ledger').get_members()})


@app.route('/api/members', methods=['POST'])
@admin_required
def add_member():
    data = json_body()
    name = (data.get('name') or '').strip()
    member_id = str(data.get('memberId') or '').strip()
    if not name or not member_id:
        raise ValidationError('이름과 회원번호를 모두 입력해주세요.')
    if not (len(member_id) == 4 and member_id.isdigit()):
        raise ValidationError('회원번호는 4자리 숫자여야 합니다.')

    ledger = service('ledger')
    if any(m['memberId'] == member_id for m in ledger.get_members()):
        raise ConflictError('이미 존재하는 회원번호입니다.')
    if not ledger.add_member(name, member_id):
        raise LedgerError('회원 추가 중 오류가 발생했습니다.')
    return jsonify({'success': True, 'message': '회원이 성공적으로 추가되었습니다.'})


@app.route('/api/members/validate', methods=['POST'])
def validate_member():
    ledger = service('ledger')
    # 검증이 꺼져 있으면 항상 통과
    if not ledger.get_member_validation():
        return jsonify({'success': True, 'isValid': True})

    data = json_body()
    name = (data.get('name') or '').strip()
    member_id = str(data.get('memberId') or '').strip()
    if not name or not member_id:
        raise ValidationError('이름과 회원번호를 모두 입력해주세요.', isValid=False)

    is_valid = any(m['name'] == name and m['memberId'] == member_id for m in ledger.get_members())
    if not is_valid:
        return jsonify({'success': True, 'isValid': False, 'message': '유효하지 않은 회원정보입니다.'})
    return jsonify({'success': True, 'isValid': True})


@app.route('/api/settings/member-validation', methods=['GET'])
@admin_required
def get_member_validation():
    return jsonify({'success': True, 'enabled': service('ledger').get_member_validation()})


@app.route('/api/settings/member-validation', methods=['PUT'])
@admin_required
def set_member_validation():
    enabled = json_body().get('enabled')
    if not isinstance(enabled, bool):
        raise ValidationError('enabled 값은 true 또는 false 여야 합니다.')
    if not service('ledger').set_member_validation(enabled):
        raise LedgerError('설정 처리 중 오류가 발생했습니다.')
    return jsonify({'success': True, 'enabled': enabled})


# ========== 노션 상세 페이지 ==========
@app.route('/api/notion/<page_id>', methods=['GET'])
def get_notion_page(page_id):
    return jsonify({'success': True, **service('notion').get_page(page_id)})


@app.route('/api/notion/image/<page_id>', methods=['GET'])
def get_notion_image(page_id):
    url = service('notion').get_first_image(page_id)
    return jsonify({'success': True, 'imageUrl': url})


if __name__ == '__main__':
    app.logger.info("🚀 Flask 서버를 시작합니다...")
    app.run(debug=False, host='0.0.0.0', port=int(os.environ.get('PORT', 5000)), use_reloader=False)
