import os
import platform
import sys


# Check if we're running in a test environment
def _is_testing():
    """Check if code is running under pytest."""
    return "pytest" in sys.modules or "PYTEST_CURRENT_TEST" in os.environ


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


APP_ENV = os.environ.get("APP_ENV", "development")
PORT = _int_env("PORT", 3001)
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
APP_VERSION = os.environ.get("APP_VERSION", "1.0.0")

# Origin of the single-page frontend, used for CORS
FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:3000")

# OpenAI API key (REQUIRED for recipe parsing from text)
# Get your API key at: https://platform.openai.com/api-keys
OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY", "sk-test-key" if _is_testing() else None)
OPENAI_MODEL = os.environ.get("OPENAI_MODEL", "gpt-4o")
OPENAI_MAX_TOKENS = _int_env("OPENAI_MAX_TOKENS", 2000)
OPENAI_TEMPERATURE = _float_env("OPENAI_TEMPERATURE", 0.3)

# Page fetching. Set USE_HEADLESS_BROWSER=false to fetch raw HTML over HTTP
# instead of rendering pages in Chromium (no JavaScript execution).
BROWSER_TIMEOUT_MS = _int_env("BROWSER_TIMEOUT", 30000)
USE_HEADLESS_BROWSER = _bool_env("USE_HEADLESS_BROWSER", True)
MAX_CONCURRENT_PARSERS = _int_env("MAX_CONCURRENT_PARSERS", 3)

# Inbound API rate limit
RATE_LIMIT_WINDOW_MS = _int_env("RATE_LIMIT_WINDOW_MS", 900000)
RATE_LIMIT_MAX_REQUESTS = _int_env("RATE_LIMIT_MAX_REQUESTS", 100)

# Parse endpoints are expensive (browser + LLM), so they get a tighter limit
PARSE_RATE_LIMIT = os.environ.get("PARSE_RATE_LIMIT", "10 per minute")

# Text parsing bounds
MAX_RECIPE_TEXT_LENGTH = 10000

DATA_DIR = os.environ.get("DATA_DIR", "data")
DATA_FILE = os.path.join(DATA_DIR, "mealmate.json")

VALID_ENVIRONMENTS = ("development", "staging", "production", "test")


def validate_environment() -> list[str]:
    """Return a list of configuration problems (empty when valid)."""
    problems = []

    if not OPENAI_API_KEY:
        problems.append("OPENAI_API_KEY environment variable is required")
    elif not OPENAI_API_KEY.startswith("sk-"):
        problems.append("OPENAI_API_KEY must be a valid OpenAI API key (starts with sk-)")

    if PORT < 1 or PORT > 65535:
        problems.append("PORT must be a valid port number between 1 and 65535")

    if APP_ENV not in VALID_ENVIRONMENTS:
        problems.append(f"APP_ENV must be one of: {', '.join(VALID_ENVIRONMENTS)}")

    if RATE_LIMIT_WINDOW_MS <= 0 or RATE_LIMIT_MAX_REQUESTS <= 0:
        problems.append("RATE_LIMIT_WINDOW_MS and RATE_LIMIT_MAX_REQUESTS must be positive")

    return problems


def is_development() -> bool:
    return APP_ENV == "development"


def is_production() -> bool:
    return APP_ENV == "production"


def api_rate_limit() -> str:
    """Flask-Limiter limit string for the general API."""
    window_seconds = max(1, RATE_LIMIT_WINDOW_MS // 1000)
    return f"{RATE_LIMIT_MAX_REQUESTS} per {window_seconds} seconds"


def environment_summary() -> dict:
    """Non-secret settings, safe to log and to expose on the detailed health endpoint."""
    return {
        "app_env": APP_ENV,
        "port": PORT,
        "log_level": LOG_LEVEL,
        "python_version": platform.python_version(),
        "openai_model": OPENAI_MODEL,
        "headless_browser": USE_HEADLESS_BROWSER,
        "max_concurrent_parsers": MAX_CONCURRENT_PARSERS,
        "data_file": DATA_FILE,
    }


_problems = validate_environment()

if _problems and not _is_testing():
    print("\n" + "=" * 70, file=sys.stderr)
    print("ERROR: Environment validation failed", file=sys.stderr)
    print("=" * 70, file=sys.stderr)
    for problem in _problems:
        print(f"  - {problem}", file=sys.stderr)
    print("\nThe OpenAI API key is required for parsing recipes from text.", file=sys.stderr)
    print("Get your API key at: https://platform.openai.com/api-keys", file=sys.stderr)
    print("\nThen set the environment variable:", file=sys.stderr)
    print("  export OPENAI_API_KEY='sk-...'", file=sys.stderr)
    print("\nOr add it to a .env file and load it before starting the app.", file=sys.stderr)
    print("=" * 70 + "\n", file=sys.stderr)
    sys.exit(1)
