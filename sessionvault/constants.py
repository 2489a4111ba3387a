# Magic and version
BUNDLE_MAGIC = b"SVBUNDL\x00"  # 8 bytes: "SVBUNDL\0"

HEADER_VERSION = 1
FORMAT_VERSION = 1

# Superblock flags
FLAG_PLAINTEXT = 1 << 0  # content stored unencrypted (development database)


# Codec IDs (0=none, 1=deflate/zlib, 2=zstd)
CODEC_NONE = 0
CODEC_DEFLATE = 1
CODEC_ZSTD = 2

CODEC_NAMES = {
    CODEC_NONE: "none",
    CODEC_DEFLATE: "deflate",
    CODEC_ZSTD: "zstd",
}

DEFAULT_CODEC_ID = CODEC_DEFLATE
DEFAULT_DEFLATE_LEVEL = 9


# Artifact names and locations
PLAIN_DB_NAME = "wwdc.db"
BUNDLE_NAME = "wwdc_bundle.encrypted"
BUNDLE_RESOURCE_DIR = "DATA"
USER_DIR_NAME = ".sessionvault"

# Environment variables
ENV_HOME = "SESSIONVAULT_HOME"
ENV_KEY = "SESSIONVAULT_KEY"
ENV_JOBS = "SESSIONVAULT_JOBS"


# Content encryption (AES-256-GCM)
KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16


# Search heuristics
EXCERPT_LIMIT = 150
SEGMENT_LIMIT = 80
SEGMENT_BEFORE = 50
SEGMENT_AFTER = 100
MAX_SEGMENTS = 4
DEFAULT_RESULT_LIMIT = 20
ELLIPSIS = "..."


# Exit codes
EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_INVALID_DATA = 3
EXIT_DECRYPTION = 4
EXIT_MISSING_BUNDLE = 5  # reserved: required external archive missing
EXIT_NO_RESULTS = 6
EXIT_NOT_FOUND = 7
EXIT_BUILD_FAILED = 8


VIDEOS_URL = "https://developer.apple.com/videos/"
