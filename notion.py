import logging
import re

import requests

from errors import AuthError, ExternalServiceError, NotFoundError, StoreError, ValidationError

logger = logging.getLogger(__name__)

NOTION_API_URL = 'https://api.notion.com/v1'

PAGE_ID_PATTERN = re.compile(
    r'([a-f0-9]{32}|[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12})',
    re.IGNORECASE,
)
IMAGE_URL_PATTERN = re.compile(r'\.(jpg|jpeg|png|gif|webp|svg)(\?|$)', re.IGNORECASE)

# 상세 페이지 렌더러가 처리하는 블록 종류
SUPPORTED_BLOCK_TYPES = (
    'paragraph',
    'heading_1',
    'heading_2',
    'heading_3',
    'bulleted_list_item',
    'numbered_list_item',
    'image',
    'code',
    'quote',
    'divider',
)


def extract_page_id(url_or_id):
    """노션 URL 또는 ID 에서 하이픈 없는 32자리 페이지 ID 추출"""
    if not url_or_id:
        return ''
    match = PAGE_ID_PATTERN.search(url_or_id)
    if match:
        return match.group(1).replace('-', '').lower()
    return url_or_id.replace('-', '')


def is_notion_reference(value):
    value = (value or '').strip()
    if not value or ',' in value:
        return False
    if IMAGE_URL_PATTERN.search(value):
        return False
    if 'notion.so' in value or 'notion.site' in value:
        return True
    return re.fullmatch(r'[a-f0-9]{32}', value.replace('-', ''), re.IGNORECASE) is not None


def first_image_url(blocks):
    for block in blocks:
        if block.get('type') == 'image':
            image = block.get('image') or {}
            return (image.get('file') or {}).get('url') or (image.get('external') or {}).get('url')
    return None


class NotionClient:
    """노션 페이지 조회 (읽기 전용) + 캐시"""

    def __init__(self, api_key, cache, version='2022-06-28', timeout=10):
        self.api_key = api_key
        self.cache = cache
        self.version = version
        self.timeout = timeout

    @property
    def configured(self):
        return bool(self.api_key)

    def _get(self, path, params=None):
        headers = {
            'Authorization': f'Bearer {self.api_key}',
            'Notion-Version': self.version,
        }
        try:
            response = requests.get(f'{NOTION_API_URL}{path}', headers=headers,
                                    params=params, timeout=self.timeout)
        except requests.exceptions.Timeout:
            raise ExternalServiceError('노션 서버 응답 시간 초과')
        except requests.exceptions.RequestException as e:
            logger.error(f"❌ 노션 요청 실패: {e}")
            raise ExternalServiceError('노션 페이지를 불러오지 못했습니다.')

        if response.ok:
            return response.json()

        try:
            body = response.json()
        except ValueError:
            body = {}
        code = body.get('code')
        message = body.get('message') or '노션 페이지를 불러오지 못했습니다.'
        logger.error(f"❌ 노션 API 오류 {response.status_code}: {code} {message}")
        if code == 'object_not_found':
            raise NotFoundError('노션 페이지가 없거나 통합에 공유되지 않았습니다.', code=code)
        if code == 'unauthorized':
            raise AuthError('노션 API 키가 잘못되었거나 페이지가 공유되지 않았습니다.', code=code)
        raise ExternalServiceError(message, code=code)

    def get_page(self, page_ref):
        if not self.configured:
            raise StoreError('노션 API가 설정되지 않았습니다.', code='notion_not_configured')
        page_id = extract_page_id(page_ref)
        if len(page_id) != 32:
            raise ValidationError('잘못된 노션 페이지 ID입니다.')

        cached = self.cache.get(('page', page_id))
        if cached is not None:
            return cached

        page = self._get(f'/pages/{page_id}')
        children = self._get(f'/blocks/{page_id}/children', params={'page_size': 100})
        blocks = [b for b in children.get('results', []) if b.get('type') in SUPPORTED_BLOCK_TYPES]
        skipped = len(children.get('results', [])) - len(blocks)
        if skipped:
            logger.info(f"노션 페이지 {page_id}: 지원하지 않는 블록 {skipped}개 제외")

        data = {'page': page, 'blocks': blocks}
        self.cache.set(('page', page_id), data)
        return data

    def get_first_image(self, page_ref):
        page_id = extract_page_id(page_ref)
        cached = self.cache.get(('image', page_id))
        if cached is not None:
            return cached
        url = first_image_url(self.get_page(page_id)['blocks'])
        if url:
            self.cache.set(('image', page_id), url)
        return url
