"""Constants used throughout aosgit."""

# Version
VERSION = "0.1.0"

# Repository layout
GIT_DIR = ".git"
OBJECTS_DIR = "objects"
REFS_DIR = "refs"
HEADS_DIR = "heads"
TAGS_DIR = "tags"
HEAD_FILE = "HEAD"
CONFIG_FILE = "config"
DESCRIPTION_FILE = "description"
INDEX_FILE = "index"
DEFAULT_BRANCH = "main"

# Git object kinds
BLOB = b"blob"
TREE = b"tree"
COMMIT = b"commit"
TAG = b"tag"
OBJECT_KINDS = (BLOB, TREE, COMMIT, TAG)

# Git tree entry modes
MODE_FILE = 0o100644
MODE_EXECUTABLE = 0o100755
MODE_SYMLINK = 0o120000
MODE_TREE = 0o40000

# Hash algorithm
HASH_ALGORITHM = "sha1"
HASH_LENGTH = 40  # SHA-1 produces 40 hex characters

# Loose object compression (zlib level is fixed so output bytes are stable)
ZLIB_LEVEL = 6

# Fixed commit identity: 2021-01-01T00:00:00Z
AUTHOR_NAME = "Apple Open Source"
AUTHOR_EMAIL = "opensource@apple.com"
AUTHOR_TIMESTAMP = 1609459200
AUTHOR_TZ_OFFSET = "+0000"
TAG_MESSAGE = "tagging"

# Concurrency
DEFAULT_WORKERS = 8

# Upstream
URL_MAIN = "https://opensource.apple.com/"
URL_TARBALLS = "https://opensource.apple.com/tarballs"
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:95.0) Gecko/20100101 Firefox/95.0"
)
HTTP_TIMEOUT = 120  # seconds
HTTP_RETRIES = 3
HTTP_BACKOFF = 0.5  # seconds, doubled per retry
HTTP_RETRY_STATUSES = (500, 502, 503, 504)
ARCHIVE_SUFFIX = ".tar.gz"
MACOS_ALIASES = ("macos", "os-x", "mac-os-x")

# Exit codes
EXIT_SUCCESS = 0
EXIT_USER_ERROR = 1
EXIT_SYSTEM_ERROR = 2
EXIT_DATA_ERROR = 3
EXIT_INTERRUPTED = 130
