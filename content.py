"""소개 페이지 / 동적 페이지 콘텐츠 블록

블록은 button 과 section 두 종류이고, section 은 다시 text/image/video 로 나뉜다.
저장 시 알 수 없는 종류는 거부한다.
"""
import copy
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

import storage
from errors import ConflictError, NotFoundError, StoreError, ValidationError

logger = logging.getLogger(__name__)

BUTTON = 'button'
SECTION = 'section'
SECTION_KINDS = ('text', 'image', 'video')
CAPTIONED_KINDS = ('image', 'video')

HEADER_FONT_SIZES = ('1rem', '1.2rem', '1.5rem', '2rem')
FONT_WEIGHTS = ('normal', 'bold')


def _block_id(data):
    block_id = data.get('id')
    # bool 은 int 의 하위 타입이라 따로 거른다
    if isinstance(block_id, bool) or not isinstance(block_id, int):
        raise ValidationError('잘못된 컨텐츠 형식입니다. (id)')
    return block_id


@dataclass
class ButtonBlock:
    id: int
    text: str = '새 버튼'
    url: str = '/'
    background_color: str = '#ffffff'
    text_color: str = '#000000'
    border_color: str = '#e0e0e0'

    content_type = BUTTON

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=_block_id(data),
            text=data.get('text', '새 버튼'),
            url=data.get('url', '/'),
            background_color=data.get('backgroundColor', '#ffffff'),
            text_color=data.get('textColor', '#000000'),
            border_color=data.get('borderColor', '#e0e0e0'),
        )

    def to_dict(self):
        return {
            'id': self.id,
            'contentType': BUTTON,
            'text': self.text,
            'url': self.url,
            'backgroundColor': self.background_color,
            'textColor': self.text_color,
            'borderColor': self.border_color,
        }


@dataclass
class Caption:
    text: str = ''
    background_color: str = '#000000'
    text_color: str = '#ffffff'
    border_color: str = '#000000'


@dataclass
class SectionBlock:
    id: int
    kind: str
    content: str = ''
    background_color: str = '#ffffff'
    border_color: str = '#ffffff'
    # text 전용
    text_color: str = None
    font_size: str = None
    font_weight: str = None
    # image/video 전용
    caption: Caption = None
    url: str = None

    content_type = SECTION

    @classmethod
    def from_dict(cls, data):
        kind = data.get('type')
        if kind not in SECTION_KINDS:
            raise ValidationError(f'알 수 없는 섹션 종류입니다: {kind}')
        block = cls(
            id=_block_id(data),
            kind=kind,
            content=data.get('content') or '',
            background_color=data.get('backgroundColor', '#ffffff'),
            border_color=data.get('borderColor', '#ffffff'),
        )
        if kind == 'text':
            block.text_color = data.get('textColor', '#000000')
            block.font_size = data.get('fontSize', '1rem')
            block.font_weight = data.get('fontWeight', 'normal')
            if block.font_weight not in FONT_WEIGHTS:
                raise ValidationError('지원하지 않는 글자 굵기입니다.')
        else:
            block.caption = Caption(
                text=data.get('caption') or '',
                background_color=data.get('captionBackgroundColor', '#000000'),
                text_color=data.get('captionTextColor', '#ffffff'),
                border_color=data.get('captionBorderColor', '#000000'),
            )
            block.url = data.get('url') or ''
        return block

    def to_dict(self):
        data = {
            'id': self.id,
            'contentType': SECTION,
            'type': self.kind,
            'content': self.content,
            'backgroundColor': self.background_color,
            'borderColor': self.border_color,
        }
        if self.kind == 'text':
            data.update({
                'textColor': self.text_color,
                'fontSize': self.font_size,
                'fontWeight': self.font_weight,
            })
        else:
            caption = self.caption or Caption()
            data.update({
                'caption': caption.text,
                'captionBackgroundColor': caption.background_color,
                'captionTextColor': caption.text_color,
                'captionBorderColor': caption.border_color,
                'url': self.url or '',
            })
        return data


BLOCK_TYPES = {BUTTON: ButtonBlock, SECTION: SectionBlock}


def parse_block(data):
    if not isinstance(data, dict):
        raise ValidationError('잘못된 컨텐츠 형식입니다.')
    content_type = data.get('contentType')
    block_cls = BLOCK_TYPES.get(content_type)
    if block_cls is None:
        raise ValidationError(f'알 수 없는 컨텐츠 종류입니다: {content_type}')
    return block_cls.from_dict(data)


def parse_blocks(items):
    """블록 목록 검증 - 순서 유지, id 중복 불가"""
    if not isinstance(items, list):
        raise ValidationError('잘못된 데이터 형식입니다.')
    blocks = [parse_block(item) for item in items]
    seen = set()
    for block in blocks:
        if block.id in seen:
            raise ValidationError(f'중복된 컨텐츠 id 입니다: {block.id}')
        seen.add(block.id)
    return blocks


def move_block(blocks, block_id, direction):
    """이웃 블록과 위치 교환 (up/down 만 지원). 끝에서는 변화 없음"""
    if direction not in ('up', 'down'):
        raise ValidationError('이동 방향은 up 또는 down 이어야 합니다.')
    blocks = list(blocks)
    for index, block in enumerate(blocks):
        if block.id == block_id:
            break
    else:
        raise NotFoundError('컨텐츠를 찾을 수 없습니다.')
    target = index - 1 if direction == 'up' else index + 1
    if 0 <= target < len(blocks):
        blocks[index], blocks[target] = blocks[target], blocks[index]
    return blocks


@dataclass
class PageSettings:
    background_color: str = '#ffffff'
    header_background_color: str = '#ffffff'
    header_text_color: str = '#000000'
    header_font_size: str = '1.2rem'
    header_font_weight: str = 'normal'
    header_text: str = '제목없음'

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            raise ValidationError('잘못된 페이지 설정입니다.')
        defaults = cls()
        settings = cls(
            background_color=data.get('backgroundColor', defaults.background_color),
            header_background_color=data.get('headerBackgroundColor', defaults.header_background_color),
            header_text_color=data.get('headerTextColor', defaults.header_text_color),
            header_font_size=data.get('headerFontSize', defaults.header_font_size),
            header_font_weight=data.get('headerFontWeight', defaults.header_font_weight),
            header_text=data.get('headerText', defaults.header_text),
        )
        if settings.header_font_size not in HEADER_FONT_SIZES:
            raise ValidationError('지원하지 않는 헤더 글자 크기입니다.')
        if settings.header_font_weight not in FONT_WEIGHTS:
            raise ValidationError('지원하지 않는 헤더 글자 굵기입니다.')
        return settings

    def to_dict(self):
        return {
            'backgroundColor': self.background_color,
            'headerBackgroundColor': self.header_background_color,
            'headerTextColor': self.header_text_color,
            'headerFontSize': self.header_font_size,
            'headerFontWeight': self.header_font_weight,
            'headerText': self.header_text,
        }


DEFAULT_INTRO_CONTENT = {
    'pageSettings': PageSettings().to_dict(),
    'contents': [
        SectionBlock(id=1, kind='image', caption=Caption(), url='').to_dict(),
        SectionBlock(id=2, kind='video', caption=Caption(), url='').to_dict(),
        SectionBlock(id=3, kind='text', text_color='#000000', font_size='1rem', font_weight='normal').to_dict(),
        ButtonBlock(id=4).to_dict(),
    ],
}


def default_intro_content():
    return copy.deepcopy(DEFAULT_INTRO_CONTENT)


def parse_intro_content(data):
    if not isinstance(data, dict) or not isinstance(data.get('contents'), list):
        raise ValidationError('잘못된 데이터 형식입니다.')
    settings = data.get('pageSettings')
    page_settings = PageSettings.from_dict(settings) if settings is not None else PageSettings()
    return page_settings, parse_blocks(data['contents'])


def intro_to_dict(page_settings, blocks):
    return {
        'pageSettings': page_settings.to_dict(),
        'contents': [block.to_dict() for block in blocks],
    }


def load_intro_content(store):
    data = store.read(storage.INTRO_CONTENT, default={})
    if not isinstance(data, dict) or not data.get('contents') or not data.get('pageSettings'):
        return default_intro_content()
    try:
        return intro_to_dict(*parse_intro_content(data))
    except ValidationError as e:
        logger.warning(f"⚠️ 저장된 소개 페이지 데이터가 올바르지 않아 기본값 사용: {e.message}")
        return default_intro_content()


def save_intro_content(store, data):
    page_settings, blocks = parse_intro_content(data)
    document = intro_to_dict(page_settings, blocks)
    if not store.write(storage.INTRO_CONTENT, document):
        raise StoreError('서버 오류가 발생했습니다.')
    return document


def move_intro_block(store, block_id, direction):
    page_settings, blocks = parse_intro_content(load_intro_content(store))
    return save_intro_content(store, intro_to_dict(page_settings, move_block(blocks, block_id, direction)))


def _now_iso():
    return datetime.now(timezone.utc).isoformat()


class PageBook:
    """경로별 동적 페이지 (pages 문서: {path: {title, sections, createdAt, updatedAt}})"""

    def __init__(self, store):
        self.store = store

    def _load(self):
        pages = self.store.read(storage.PAGES)
        return pages if isinstance(pages, dict) else {}

    def _save(self, pages):
        if not self.store.write(storage.PAGES, pages):
            raise StoreError('페이지 저장에 실패했습니다.')

    def list(self):
        return [{'path': path, 'title': page.get('title') or path}
                for path, page in self._load().items()]

    def get(self, path):
        page = self._load().get(path)
        if page is None:
            raise NotFoundError('페이지를 찾을 수 없습니다.')
        return page

    def create(self, path, title, sections=None):
        path = (path or '').strip().strip('/')
        if not path or not title:
            raise ValidationError('페이지 경로와 제목은 필수입니다.')
        if '/' in path:
            raise ValidationError('페이지 경로에는 / 를 사용할 수 없습니다.')
        blocks = parse_blocks(sections or [])

        pages = self._load()
        if path in pages:
            raise ConflictError('이미 존재하는 페이지 경로입니다.')
        pages[path] = {
            'title': title,
            'sections': [b.to_dict() for b in blocks],
            'createdAt': _now_iso(),
        }
        self._save(pages)
        return pages[path]

    def update(self, path, data):
        pages = self._load()
        page = pages.get(path)
        if page is None:
            raise NotFoundError('페이지를 찾을 수 없습니다.')
        if data.get('title'):
            page['title'] = data['title']
        if data.get('sections') is not None:
            page['sections'] = [b.to_dict() for b in parse_blocks(data['sections'])]
        page['updatedAt'] = _now_iso()
        self._save(pages)
        return page

    def delete(self, path):
        pages = self._load()
        if path not in pages:
            raise NotFoundError('페이지를 찾을 수 없습니다.')
        del pages[path]
        self._save(pages)
