import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

APP_VERSION = "2025-09-18_02"

DEFAULT_API_BASE_URL = "https://api.mercadopago.com"
DEFAULT_PUBLIC_BASE_URL = "http://localhost:3001"
DEFAULT_HTTP_TIMEOUT_SEC = 5.0

# Item prices per plan (MXN). Overridable with PLAN_PRICE_<PLAN>.
DEFAULT_PLAN_PRICES: dict[str, float] = {
    "free": 0.0,
    "basic": 29.0,
    "pro": 300.0,
    "premium": 500.0,
}

# Days of access granted per approved payment. 0 means "no expiry".
DEFAULT_PLAN_DAYS: dict[str, int] = {
    "free": 0,
    "basic": 0,
    "pro": 365,
    "premium": 365,
}


@dataclass
class Config:
    # Mercado Pago
    mp_access_token: str
    mp_webhook_secret: str
    mp_webhook_url: str
    mp_api_base_url: str
    mp_http_timeout_sec: float
    mp_currency: str
    payment_processor: str  # mercadopago | mock
    # Redirects after checkout
    public_base_url: str
    success_url: str
    failure_url: str
    pending_url: str
    # Plans
    plan_prices: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_PLAN_PRICES))
    plan_days: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_PLAN_DAYS))
    # HTTP server
    api_host: str = "0.0.0.0"
    api_port: int = 3001
    # Storage
    db_path: str = "state.db"
    app_env: str = "development"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


def clean_env(value: str | None, default: str = "") -> str:
    """Strip whitespace and wrapping quotes from env value."""
    if value is None:
        return default
    return value.strip().strip('"').strip("'")


def parse_bool(value: str | None, default: bool = False) -> bool:
    """Парсить булеве значення з env."""
    if value is None:
        return default
    value = clean_env(value).lower()
    if value in {"1", "true", "yes", "y", "on"}:
        return True
    if value in {"0", "false", "no", "n", "off"}:
        return False
    return default


def parse_int(value: str | None, default: int) -> int:
    value = clean_env(value)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def parse_float(value: str | None, default: float) -> float:
    value = clean_env(value)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def parse_plan_prices(env: dict[str, str]) -> dict[str, float]:
    """Read PLAN_PRICE_<PLAN> overrides on top of the default price table."""
    prices = dict(DEFAULT_PLAN_PRICES)
    for plan, default in DEFAULT_PLAN_PRICES.items():
        price = parse_float(env.get(f"PLAN_PRICE_{plan.upper()}"), default)
        if price >= 0:
            prices[plan] = price
    return prices


def parse_plan_days(env: dict[str, str]) -> dict[str, int]:
    """Read PLAN_DAYS_<PLAN> overrides (legacy PLAN_DURATION_DAYS_<PLAN> too)."""
    days = dict(DEFAULT_PLAN_DAYS)
    for plan, default in DEFAULT_PLAN_DAYS.items():
        raw = env.get(f"PLAN_DAYS_{plan.upper()}") or env.get(f"PLAN_DURATION_DAYS_{plan.upper()}")
        value = parse_int(raw, default)
        if value >= 0:
            days[plan] = value
    return days


def _redirect_url(env: dict[str, str], key: str, base_url: str, outcome: str) -> str:
    explicit = clean_env(env.get(key))
    if explicit:
        return explicit
    return f"{base_url.rstrip('/')}/pago/{outcome}"


def load_config(env: dict[str, str] | None = None, *, dotenv_path: Path | None = None) -> Config:
    """Build Config from the process environment (after loading .env)."""
    if env is None:
        # Завантажуємо .env з робочого каталогу (там де запускається скрипт)
        load_dotenv(dotenv_path or Path.cwd() / ".env")
        env = dict(os.environ)

    public_base_url = clean_env(env.get("PUBLIC_BASE_URL"), DEFAULT_PUBLIC_BASE_URL) or DEFAULT_PUBLIC_BASE_URL
    api_port = parse_int(env.get("API_PORT") or env.get("PORT"), 3001)

    return Config(
        mp_access_token=clean_env(env.get("MP_ACCESS_TOKEN")),
        mp_webhook_secret=clean_env(env.get("MP_WEBHOOK_SECRET")),
        mp_webhook_url=clean_env(env.get("MP_WEBHOOK_URL"))
        or f"http://localhost:{api_port}/webhook_mp",
        mp_api_base_url=clean_env(env.get("MP_API_BASE_URL"), DEFAULT_API_BASE_URL) or DEFAULT_API_BASE_URL,
        mp_http_timeout_sec=parse_float(env.get("MP_HTTP_TIMEOUT_SEC"), DEFAULT_HTTP_TIMEOUT_SEC),
        mp_currency=clean_env(env.get("MP_CURRENCY"), "MXN").upper() or "MXN",
        payment_processor=clean_env(env.get("PAYMENT_PROCESSOR"), "mercadopago").lower() or "mercadopago",
        public_base_url=public_base_url,
        success_url=_redirect_url(env, "REGISTRO_SUCCESS_URL", public_base_url, "success"),
        failure_url=_redirect_url(env, "REGISTRO_FAILURE_URL", public_base_url, "failure"),
        pending_url=_redirect_url(env, "REGISTRO_PENDING_URL", public_base_url, "pending"),
        plan_prices=parse_plan_prices(env),
        plan_days=parse_plan_days(env),
        api_host=clean_env(env.get("API_HOST"), "0.0.0.0") or "0.0.0.0",
        api_port=api_port,
        # Шлях до БД: з env або відносно робочого каталогу
        db_path=clean_env(env.get("DB_PATH")) or str(Path.cwd() / "state.db"),
        app_env=clean_env(env.get("APP_ENV") or env.get("NODE_ENV"), "development").lower() or "development",
    )


def mask_secret(value: str | None) -> str | None:
    """Show only the edges of a secret for diagnostics."""
    if not value:
        return None
    text = str(value)
    if len(text) <= 12:
        return "…"
    return f"{text[:6]}…{text[-4:]}"
