from enum import Enum

# Логическое пространство имён кэша тайлов по умолчанию
DEFAULT_CACHE_NAME = 'offline-map-tiles'

# Формат, в котором тайлы сохраняются в кэш (MIME)
DEFAULT_CACHE_FORMAT = 'image/png'

# Максимальный возраст записи кэша (мс). Хранится в настройках, не применяется
DEFAULT_CACHE_MAX_AGE_MS = 24 * 3600 * 1000

# Поддерживаемые форматы кэша: MIME -> формат Pillow
CACHE_FORMATS: dict[str, str] = {
    'image/png': 'PNG',
    'image/jpeg': 'JPEG',
    'image/webp': 'WEBP',
}

# Прозрачный GIF 1x1, которым подменяется отсутствующий в кэше тайл (offline)
EMPTY_IMAGE_URL = 'data:image/gif;base64,R0lGODlhAQABAAD/ACwAAAAAAQABAAACADs='

# Попыток повторного чтения тайла при попадании в кэш (первая + один повтор)
HIT_FETCH_ATTEMPTS = 2

# Максимальный уровень приближения по умолчанию
MAX_ZOOM = 18

# Поддомены, подставляемые в шаблон {s}
DEFAULT_SUBDOMAINS = 'abc'

# Максимальное число параллельно разрешаемых тайлов
ASYNC_MAX_CONCURRENCY = 8

# Каталог SQLite-хранилища тайлов (переопределяется переменной окружения)
TILE_STORE_DIR_ENV = 'TILE_STORE_DIR'
TILE_STORE_DIR = '.offline_tiles/store'
TILE_STORE_DB_SUFFIX = '.db'

# HTTP-кэш ответов (aiohttp_client_cache), используется только при явном каталоге
HTTP_CACHE_EXPIRE_HOURS = 168
HTTP_CACHE_RESPECT_HEADERS = True
HTTP_CACHE_STALE_IF_ERROR_HOURS = 72

# Таймаут HTTP-запроса к источнику тайлов (сек)
HTTP_TIMEOUT_DEFAULT = 20.0

# Коды HTTP
HTTP_OK = 200
HTTP_2XX_MIN = 200
HTTP_2XX_MAX = 300

# Лог-файл CLI
LOG_FILE_NAME = 'offline_tiles.log'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class TileEvent(str, Enum):
    """События слоя, на которые может подписаться приложение."""

    CACHE_HIT = 'tilecachehit'
    CACHE_MISS = 'tilecachemiss'
