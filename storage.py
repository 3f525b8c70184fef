import json
import logging
import os
import tempfile

logger = logging.getLogger(__name__)

# 저장소 문서 이름
PRODUCTS = 'products'
PAGES = 'pages'
HOMEPAGE_SETTINGS = 'homepage-settings'
BUSINESS_INFO = 'business-info'
INTRO_CONTENT = 'intro-content'


class JsonStore:
    """data 디렉토리 아래 JSON 문서 하나당 컬렉션 하나를 저장하는 단순 저장소

    읽기 실패는 빈 기본값으로 대체하고, 쓰기 실패는 로그 후 False 를 돌려준다.
    잠금이 없으므로 동시에 쓰면 마지막 쓰기가 남는다.
    """

    def __init__(self, data_dir):
        self.data_dir = data_dir

    def path_for(self, name):
        return os.path.join(self.data_dir, f'{name}.json')

    @staticmethod
    def empty_default(name):
        # 페이지 맵만 객체, 나머지는 배열
        return {} if name == PAGES else []

    def read(self, name, default=None):
        if default is None:
            default = self.empty_default(name)
        file_path = self.path_for(name)
        if not os.path.exists(file_path):
            return default
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"⚠️ {name}.json 읽기 실패, 기본값 사용: {e}")
            return default

    def write(self, name, value):
        file_path = self.path_for(name)
        try:
            os.makedirs(self.data_dir, exist_ok=True)
            # 같은 디렉토리의 임시 파일에 쓴 뒤 교체
            fd, tmp_path = tempfile.mkstemp(dir=self.data_dir, prefix=f'.{name}.', suffix='.tmp')
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(value, f, ensure_ascii=False, indent=2)
                os.replace(tmp_path, file_path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"❌ {name}.json 저장 실패: {e}")
            return False
