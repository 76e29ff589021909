"""
This module contains the configuration settings for Hydra.
It defines paths, supervisor timings and logging options, and is imported by
every other module that needs a tunable value.
"""

import os
import pathlib
from dotenv import load_dotenv

# Seed the process environment from a .env file in the working directory.
# Variables already exported in the shell take precedence.
load_dotenv()

#* --- Core Paths ---
BASE_DIR = pathlib.Path.cwd()
TOPOLOGY_PATH = pathlib.Path(os.getenv("HYDRA_TOPOLOGY", "topology.json"))
LOGS_DIR = pathlib.Path(os.getenv("HYDRA_LOGS_DIR", str(BASE_DIR / "logs")))
LOG_FILE_PATH = LOGS_DIR / "hydra.log"

#* --- Logging ---
LOG_FILE_ENABLED = os.getenv("HYDRA_LOG_FILE", "True").lower() in ('true', '1', 't')
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUP_COUNT = 3
VERBOSE_LOGGING = False

#* --- Supervisor Settings ---
DEFAULT_SHELL = "/bin/sh"
GRACE_PERIOD_SECONDS = 1   # between SIGINT and SIGKILL for leftover descendants
LOG_PREFIX = "## HYDRA ##: "
DOTENV_FILENAME = ".env"
OUTPUT_LINE_LIMIT = 1024 * 1024   # longer output lines are forwarded in pieces
SUPERVISOR_PROC_TITLE = "Hydra - Supervisor"
