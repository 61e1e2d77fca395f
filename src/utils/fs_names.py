"""Default file and directory names of the experiment harness layout."""

# experiment source directory
SRC_TEMPLATE_DIR = "template"
SRC_RUN_FILE = "run.sh"
SRC_ENV_DIR = "envs"
SRC_ENV_FILE = "0.env"
SRC_SETTINGS_FILE = "exomat.yaml"

# experiment series directory
SERIES_SRC_DIR = ".src"
SERIES_RUNS_DIR = "runs"
SERIES_EXOMAT_LOG = "exomat.log"
SERIES_STDERR_LOG = "stderr.log"
SERIES_STDOUT_LOG = "stdout.log"

# experiment run directory
RUN_RUN_FILE = "run.sh"
RUN_ENV_FILE = "environment.env"
RUN_DIR_PREFIX = "run_"

# marker files
MARKER_SRC = ".exomat_source"
MARKER_SRC_CP = ".exomat_source_copy"
MARKER_SERIES = ".exomat_series"
MARKER_RUN = ".exomat_run"

ENV_FILE_SUFFIX = ".env"
OUTPUT_MARKER = "out_"

# variables exomat sets itself
REPETITION_VAR = "REPETITION"
EXP_SRC_DIR_VAR = "EXP_SRC_DIR"
RESERVED_VARS = (REPETITION_VAR, EXP_SRC_DIR_VAR)
