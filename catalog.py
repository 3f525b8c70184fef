import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

import storage
from errors import NotFoundError, StoreError, ValidationError
from notion import extract_page_id, is_notion_reference

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = '기타'
CATEGORY_OPTIONS = ['수산물', '과일', '야채', '축산물', '가공식품', DEFAULT_CATEGORY]


def to_int(value, field_name, allow_none=False):
    """폼/JSON 에서 온 숫자 값을 정수로 변환"""
    if value is None or (isinstance(value, str) and not value.strip()):
        if allow_none:
            return None
        raise ValidationError(f'{field_name} 값을 입력해주세요.')
    if isinstance(value, bool):
        raise ValidationError(f'{field_name} 값이 올바르지 않습니다.')
    if isinstance(value, float) and not value.is_integer():
        raise ValidationError(f'{field_name} 값은 정수여야 합니다.')
    try:
        return int(str(value).strip()) if isinstance(value, str) else int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field_name} 값이 올바르지 않습니다.')


def normalize_category(category):
    if category is None:
        return DEFAULT_CATEGORY
    category = str(category).strip()
    return category or DEFAULT_CATEGORY


@dataclass
class Product:
    id: str
    name: str
    price: int
    description: str = ''
    image_url: str = ''
    category: str = DEFAULT_CATEGORY
    weight: int = None
    available: bool = True
    display_order: int = 0
    detail_page_url: str = ''
    extra: dict = field(default_factory=dict)

    KEYS = ('id', 'name', 'description', 'price', 'imageUrl', 'category',
            'weight', 'available', 'displayOrder', 'detailPageUrl')

    @classmethod
    def from_dict(cls, data):
        weight = data.get('weight')
        return cls(
            id=str(data.get('id', '')),
            name=data.get('name', ''),
            description=data.get('description') or '',
            price=to_int(data.get('price', 0), '가격'),
            image_url=data.get('imageUrl') or '',
            category=normalize_category(data.get('category')),
            weight=to_int(weight, '무게', allow_none=True),
            available=bool(data.get('available', True)),
            display_order=to_int(data.get('displayOrder') or 0, '노출 순서'),
            detail_page_url=data.get('detailPageUrl') or '',
            # createdAt/updatedAt 등 나머지 키는 그대로 보존
            extra={k: v for k, v in data.items() if k not in cls.KEYS},
        )

    def to_dict(self):
        data = {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'price': self.price,
            'imageUrl': self.image_url,
            'category': self.category,
            'weight': self.weight,
            'available': self.available,
            'displayOrder': self.display_order,
            'detailPageUrl': self.detail_page_url,
        }
        data.update(self.extra)
        return data


def sort_products(products):
    return sorted(products, key=lambda p: p.display_order or 0)


def detail_reference(detail_page_url):
    """상품 상세 정보 참조 해석

    쉼표로 구분된 이미지 URL 목록이거나 노션 페이지(URL 또는 32자리 ID) 중 하나.
    """
    url = (detail_page_url or '').strip()
    if not url:
        return {'type': 'none'}
    if is_notion_reference(url):
        return {'type': 'notion', 'pageId': extract_page_id(url)}
    images = [u.strip() for u in url.split(',') if u.strip()]
    if images:
        return {'type': 'images', 'images': images}
    return {'type': 'none'}


class Catalog:
    """평면 저장소의 products 문서 위에서 동작하는 상품 관리"""

    def __init__(self, store):
        self.store = store

    def _load(self):
        return [Product.from_dict(p) for p in self.store.read(storage.PRODUCTS) if isinstance(p, dict)]

    def _save(self, products):
        if not self.store.write(storage.PRODUCTS, [p.to_dict() for p in products]):
            raise StoreError('상품 정보 저장에 실패했습니다.')

    def list(self):
        return sort_products(self._load())

    def get(self, product_id):
        for product in self._load():
            if product.id == product_id:
                return product
        return None

    def price_index(self):
        return {p.id: p for p in self._load()}

    def create(self, data):
        name = (data.get('name') or '').strip()
        if not name:
            raise ValidationError('상품명을 입력해주세요.')
        price = to_int(data.get('price'), '가격')
        if price < 0:
            raise ValidationError('가격은 0원 이상이어야 합니다.')

        products = self._load()
        product = Product.from_dict({**data, 'name': name, 'price': price})
        # 같은 밀리초에 여러 개가 추가되면 다음 값으로 밀어낸다
        taken = {p.id for p in products}
        stamp = int(time.time() * 1000)
        while f'product_{stamp}' in taken:
            stamp += 1
        product.id = f'product_{stamp}'
        product.display_order = len(products) + 1
        products.append(product)
        self._save(products)
        logger.info(f"✅ 상품 추가: {product.id} {product.name}")
        return product

    def update(self, product_id, data):
        products = self._load()
        for product in products:
            if product.id == product_id:
                break
        else:
            raise NotFoundError('상품을 찾을 수 없습니다.')

        # 값이 들어온 필드만 반영
        if data.get('name'):
            product.name = data['name']
        if 'description' in data:
            product.description = data['description'] or ''
        if data.get('price'):
            product.price = to_int(data['price'], '가격')
        if 'imageUrl' in data:
            product.image_url = data['imageUrl'] or ''
        if 'available' in data:
            product.available = bool(data['available'])
        if 'category' in data:
            product.category = normalize_category(data['category'])
        if 'weight' in data:
            product.weight = to_int(data['weight'], '무게', allow_none=True)
        if 'detailPageUrl' in data:
            product.detail_page_url = data['detailPageUrl'] or ''
        product.extra['updatedAt'] = datetime.now(timezone.utc).isoformat()

        self._save(products)
        return product

    def delete(self, product_id):
        products = self._load()
        remaining = [p for p in products if p.id != product_id]
        if len(remaining) == len(products):
            raise NotFoundError('상품을 찾을 수 없습니다.')
        self._save(remaining)

    def reorder(self, updates):
        """[{id, displayOrder}, ...] 를 반영하고 순서대로 정렬해 저장"""
        if not isinstance(updates, list):
            raise ValidationError('잘못된 데이터 형식입니다.')
        orders = {}
        for update in updates:
            if not isinstance(update, dict) or 'id' not in update:
                raise ValidationError('잘못된 데이터 형식입니다.')
            orders[update['id']] = to_int(update.get('displayOrder'), '노출 순서')

        products = self._load()
        for product in products:
            if product.id in orders:
                product.display_order = orders[product.id]
        products = sort_products(products)
        self._save(products)
        return products

    def replace_all(self, products):
        """장부 사본으로 전체 교체 - 장부에 없는 로컬 키(createdAt, updatedAt 등)는 id 기준으로 유지"""
        local = {p.id: p for p in self._load()}
        for product in products:
            previous = local.get(product.id)
            if previous is not None:
                product.extra = {**previous.extra, **product.extra}
        products = sort_products(products)
        self._save(products)
        return products
