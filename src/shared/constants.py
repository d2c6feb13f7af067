from enum import Enum

# Имя приложения и User-Agent для запросов к серверам тайлов
APP_NAME = 'TileKeeper'
APP_VERSION = '1.0.0'
HTTP_USER_AGENT = f'{APP_NAME}/{APP_VERSION} (Offline Map Tile Caching)'

# HTTP-сервер
DEFAULT_PORT = 3000
DEFAULT_HOST = '0.0.0.0'

# Файл базы данных тайлов (один файл SQLite)
DEFAULT_DB_PATH = './data/tiles.db'

# Максимальное число одновременных загрузок (глобально, по всем заданиям)
DEFAULT_MAX_CONCURRENT_DOWNLOADS = 4

# Минимальный интервал между запросами к серверу тайлов (мс)
DEFAULT_RATE_LIMIT_MS = 500

# Размер LRU-кэша тайлов в памяти (штук)
DEFAULT_CACHE_SIZE = 1000

# Таймаут загрузки одного тайла (секунды)
DEFAULT_FETCH_TIMEOUT_S = 30.0

# Уровень логирования по умолчанию
DEFAULT_LOG_LEVEL = 'info'
LOG_LEVELS = ('error', 'warn', 'warning', 'info', 'debug')

# Оценка объёма и времени загрузки
AVERAGE_TILE_SIZE_KB = 15
DOWNLOAD_TIME_PER_TILE_S = 0.5

# Прогресс задания пишется в БД каждые N успешно загруженных тайлов
PROGRESS_FLUSH_EVERY = 10

# Допустимый диапазон уровней масштаба
MIN_ZOOM = 0
MAX_ZOOM = 22

# Предел широты проекции Web Mercator (градусы)
WORLD_LAT_MAX_DEG = 85.051129
WORLD_LNG_HALF_SPAN_DEG = 180.0
WORLD_LNG_SPAN_DEG = 360.0

# Базовый размер тайла Web Mercator (пикселей)
TILE_SIZE = 256

# Длина идентификатора задания в байтах (в hex — вдвое больше)
JOB_ID_BYTES = 16

# Кэширование отдаваемых тайлов на стороне клиента (секунды)
TILE_HTTP_MAX_AGE_S = 86400

# Обратное геокодирование (Nominatim / OpenStreetMap)
NOMINATIM_REVERSE_URL = 'https://nominatim.openstreetmap.org/reverse'
GEOCODER_TIMEOUT_S = 5.0
GEOCODER_ZOOM = 10
GEOCODE_JOBS_DEFAULT = False

# Ключ секции в TOML-файле конфигурации
CONFIG_SECTION = 'tilekeeper'

# HTTP диапазон успешных ответов
HTTP_2XX_MIN = 200
HTTP_2XX_MAX = 300

# Таймаут запросов CLI к запущенному серверу, сек
CLI_HTTP_TIMEOUT_S = 10.0

# Адреса «все интерфейсы», вместо которых CLI обращается к localhost
WILDCARD_HOSTS = ('0.0.0.0', '::', '')


class JobStatus(str, Enum):
    PENDING = 'pending'
    RUNNING = 'running'
    COMPLETED = 'completed'
    COMPLETED_WITH_ERRORS = 'completed_with_errors'
    CANCELLED = 'cancelled'

    @property
    def is_terminal(self) -> bool:
        return self in (
            JobStatus.COMPLETED,
            JobStatus.COMPLETED_WITH_ERRORS,
            JobStatus.CANCELLED,
        )
