"""Project-wide constants for subtree-mcp."""

TRAILER_DIR = "embedded-dir"
TRAILER_SPLIT = "embedded-split"
TRAILER_MAINLINE = "embedded-mainline"

CONFIG_FILE_NAME = ".subtree-config.yaml"
FETCH_HEAD = "FETCH_HEAD"
NULL_OID = "0" * 40

DEFAULT_GIT_BINARY = "git"
DEFAULT_FETCH_TIMEOUT_SECONDS = 300.0
