from __future__ import annotations
import os

CONFIG_FILE = os.environ.get("RUNWAY_CONFIG", "runway.yml")
ARTIFACTS_DIR = os.environ.get("RUNWAY_ARTIFACTS_DIR", ".runway/artifacts")
WORKSPACE_DIR = os.environ.get("RUNWAY_WORKSPACE_DIR", ".runway/workspaces")
MAX_WORKERS = int(os.environ["RUNWAY_MAX_WORKERS"]) if os.environ.get("RUNWAY_MAX_WORKERS") else None
DOCKER = os.environ.get("RUNWAY_DOCKER", "docker")
SHELL = os.environ.get("RUNWAY_SHELL", "/bin/bash -eo pipefail -c")
LOG_LEVEL = os.environ.get("RUNWAY_LOG_LEVEL", "WARNING")
