import logging
import os
from functools import lru_cache

logger = logging.getLogger("cleancare.env")


@lru_cache(maxsize=1)
def ensure_loaded() -> None:
    """Load a dotenv-style file once, if present.

    Priority:
    1) CLEANCARE_ENV_FILE path
    2) .env (relative to CWD)
    Does not override environment variables already set.
    """
    candidates = [
        os.getenv("CLEANCARE_ENV_FILE", ""),
        ".env",
    ]
    for p in candidates:
        if p and os.path.isfile(p):
            load_env_file(p)
            return


def load_env_file(path: str) -> int:
    loaded = 0
    try:
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                if line.startswith("export "):
                    line = line[len("export "):]
                if "=" not in line:
                    continue
                k, v = line.split("=", 1)
                k = k.strip()
                v = v.strip().strip('"').strip("'")
                if k and k not in os.environ:
                    os.environ[k] = v
                    loaded += 1
    except OSError as exc:
        logger.warning("Could not read env file %s: %s", path, exc)
        return 0
    logger.debug("Loaded %s variables from %s", loaded, path)
    return loaded
