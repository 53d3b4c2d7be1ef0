import os


def _env(name: str, default):
    raw = os.environ.get(f"SHUATI_{name}")
    if raw is None:
        return default
    if isinstance(default, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    return type(default)(raw)


class Settings:
    PROJECT_NAME: str = _env("PROJECT_NAME", "shuati")
    DEBUG: bool = _env("DEBUG", False)
    LOG_DIR: str = _env("LOG_DIR", "log")
    LOG_FILE: str = _env("LOG_FILE", "shuati.log")
    LOG_TO_DB: bool = _env("LOG_TO_DB", True)
    DB_DIR: str = _env("DB_DIR", "db")
    DB_FILE: str = _env("DB_FILE", "shuati.db")
    REDIS_URL: str = _env("REDIS_URL", "redis://localhost:6379/0")
    REDIS_TIMEOUT_SECONDS: float = _env("REDIS_TIMEOUT_SECONDS", 2.0)
    BANK_DIR: str = _env("BANK_DIR", "banks")
    SESSION_COOKIE_NAME: str = _env("SESSION_COOKIE_NAME", "quiz_session_id")
    SESSION_TIMEOUT_MINUTES: int = _env("SESSION_TIMEOUT_MINUTES", 120)
    DEVICE_COOKIE_DAYS: int = _env("DEVICE_COOKIE_DAYS", 365)
    # Auto-advance delays after an answer, in seconds.
    CORRECT_JUMP_SECONDS: float = _env("CORRECT_JUMP_SECONDS", 2.5)
    WRONG_JUMP_SECONDS: float = _env("WRONG_JUMP_SECONDS", 3.5)
    AUTOSAVE_EVERY: int = _env("AUTOSAVE_EVERY", 10)

    @property
    def db_path(self) -> str:
        return os.path.join(self.DB_DIR, self.DB_FILE)


settings = Settings()
