APP_VERSION = "0.1.0"

DEFAULT_CONFIG_NAME = "imgbatch.toml"

# Case-insensitive filename suffixes picked up by discovery.
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".bmp", ".gif")

EXTENSION_TO_FORMAT = {
    "jpg": "JPEG",
    "jpeg": "JPEG",
    "png": "PNG",
    "bmp": "BMP",
    "gif": "GIF",
}

VALID_DEFAULT_FORMATS = sorted({"jpeg", "png", "bmp", "gif"})

DEFAULT_OUTPUT_FORMAT = "JPEG"
DEFAULT_JPEG_QUALITY = 90

# Pool defaults; workers=None means os.cpu_count().
DEFAULT_QUEUE_FACTOR = 4
DEFAULT_SHUTDOWN_TIMEOUT = 60.0

CANCELLED_MESSAGE = "cancelled"
ESCAPE_CHAR = "\x1b"

SECTION_KEY_MAP = {
    "pool": ("workers", "queue_size", "shutdown_timeout"),
    "output": ("default_format", "jpeg_quality", "atomic_writes"),
}

DEFAULT_TOML_TEMPLATE = """
# imgbatch configuration.
# Every key is optional; command line flags override these values.

[pool]
# Number of worker threads. Omit to use the number of CPUs.
# workers = 4
# Maximum number of submitted-but-unfinished files held by the pool.
# queue_size = 16
# Seconds to wait for queued/running files on shutdown before giving up.
shutdown_timeout = 60

[output]
# Format used by --scale when a file's extension is not recognized.
default_format = "jpeg"
jpeg_quality = 90
# Write scale/negate results to a temp file and rename it over the source.
atomic_writes = false

[logging]
file_enabled = true
# file_path = "imgbatch.log"
file_level = "INFO"
cli_level = "INFO"
silent = false
"""
