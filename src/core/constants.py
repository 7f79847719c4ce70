"""Core constants used across Kiln modules.

This module centralizes non-domain-specific constants.
Keeping values here avoids magic literals in business logic.
"""

from __future__ import annotations

from pathlib import Path

DEFAULT_BUILD_ROOT = Path(".kiln")
STAGES_DIR_NAME = "stages"
LOGS_DIR_NAME = "logs"
IMAGE_MANIFEST_FILE_NAME = "image.json"
DEFAULT_MAX_PARALLEL_STAGES = 4
DEFAULT_FETCH_ATTEMPTS = 3
DEFAULT_FETCH_BACKOFF_SECONDS = 5.0
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_STAGE_PATH = "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"
DEFAULT_STAGE_LANG = "C.UTF-8"
DEFAULT_DIRECTORY_MODE = 0o755
DEFAULT_IDENTITY_SHELL = "/usr/sbin/nologin"
SHELL_EXECUTABLE = "/bin/sh"
GIT_EXECUTABLE = "git"
GIT_CLONE_CONFIG = (
    "http.sslVerify=true",
    "core.compression=0",
    "http.postBuffer=1048576000",
)
SUPPORTED_PIPELINE_VERSIONS = (1,)
SUPPORTED_LISTENER_PROTOCOLS = ("tcp", "udp")
MODULE_COMMENT_MARKER = "#"
STAGE_NAME_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_.-]*$"
