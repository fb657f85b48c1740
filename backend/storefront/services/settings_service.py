from __future__ import annotations

import re
import threading
from dataclasses import asdict, dataclass, fields, replace
from typing import Any

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Setting
from .errors import InvalidRequestError, NotFoundError
from storefront.time_utils import utcnow

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
URL_RE = re.compile(r"^https?://\S+$")


class SettingsValidationError(InvalidRequestError):
    pass


# =============================================================================
# TYPED SETTINGS
# =============================================================================

@dataclass(frozen=True)
class StoreSettings:
    name: str = "STORE"
    # Receives new-order notifications; empty disables them
    email: str = ""
    phone: str = ""
    address: str = ""
    currency: str = "INR"
    currency_symbol: str = "₹"
    tax_rate: float = 0.0
    free_shipping_threshold: float = 999.0
    default_shipping_cost: float = 49.0

    def validate(self) -> None:
        if not self.name or len(self.name) > 100:
            raise SettingsValidationError("name must be 1-100 characters")
        if self.email and not EMAIL_RE.match(self.email):
            raise SettingsValidationError("email must be a valid email address")
        if len(self.currency) != 3:
            raise SettingsValidationError("currency must be a 3-letter code")
        if not 0 <= self.tax_rate <= 100:
            raise SettingsValidationError("tax_rate must be between 0 and 100")
        _non_negative(self, "free_shipping_threshold", "default_shipping_cost")


@dataclass(frozen=True)
class ShippingSettings:
    enable_free_shipping: bool = True
    free_shipping_minimum: float = 999.0
    flat_rate: float = 49.0
    delivery_days_min: int = 3
    delivery_days_max: int = 7
    enable_cod: bool = True
    cod_extra_charge: float = 0.0

    def validate(self) -> None:
        _non_negative(self, "free_shipping_minimum", "flat_rate", "cod_extra_charge")
        if self.delivery_days_min < 1 or self.delivery_days_max < 1:
            raise SettingsValidationError("delivery days must be at least 1")
        if self.delivery_days_min > self.delivery_days_max:
            raise SettingsValidationError("delivery_days_min cannot exceed delivery_days_max")


@dataclass(frozen=True)
class PaymentSettings:
    razorpay_enabled: bool = True
    cod_enabled: bool = True
    test_mode: bool = False

    def validate(self) -> None:
        if not (self.razorpay_enabled or self.cod_enabled):
            raise SettingsValidationError("At least one payment method must be enabled")


@dataclass(frozen=True)
class SeoSettings:
    meta_title: str = ""
    meta_description: str = ""
    meta_keywords: str = ""
    og_image: str = ""
    google_analytics_id: str = ""

    def validate(self) -> None:
        if len(self.meta_title) > 70:
            raise SettingsValidationError("meta_title must be at most 70 characters")
        if len(self.meta_description) > 160:
            raise SettingsValidationError("meta_description must be at most 160 characters")
        if self.og_image and not URL_RE.match(self.og_image):
            raise SettingsValidationError("og_image must be a URL")


@dataclass(frozen=True)
class SocialSettings:
    facebook: str = ""
    instagram: str = ""
    twitter: str = ""
    youtube: str = ""
    pinterest: str = ""

    def validate(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if value and not URL_RE.match(value):
                raise SettingsValidationError(f"{f.name} must be a URL")


SETTINGS_TYPES: dict[str, type] = {
    "store": StoreSettings,
    "shipping": ShippingSettings,
    "payment": PaymentSettings,
    "seo": SeoSettings,
    "social": SocialSettings,
}


def _non_negative(obj, *names: str) -> None:
    for name in names:
        if getattr(obj, name) < 0:
            raise SettingsValidationError(f"{name} cannot be negative")


def _coerce_field(name: str, expected: type, value: Any) -> Any:
    if expected is bool:
        if isinstance(value, bool):
            return value
    elif expected is int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    elif expected is float:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    elif expected is str:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
    raise SettingsValidationError(f"{name} must be of type {expected.__name__}")


def build_settings(domain: str, values: dict | None, *, base=None):
    """
    Build a validated settings object for `domain` from a partial mapping.

    Keys missing from `values` keep the value from `base` (or the default).
    Unknown keys are rejected.
    """
    cls = SETTINGS_TYPES.get(domain)
    if cls is None:
        raise NotFoundError(f"Unknown settings domain: {domain}")
    if values is None:
        values = {}
    if not isinstance(values, dict):
        raise SettingsValidationError("Settings must be an object")

    # Annotations are strings under `from __future__ import annotations`
    types = {f.name: {"bool": bool, "int": int, "float": float, "str": str}[f.type] for f in fields(cls)}
    unknown = set(values) - set(types)
    if unknown:
        raise SettingsValidationError(f"Unknown {domain} settings: {', '.join(sorted(unknown))}")

    coerced = {name: _coerce_field(name, types[name], value) for name, value in values.items()}
    settings = replace(base if base is not None else cls(), **coerced)
    settings.validate()
    return settings


# =============================================================================
# CACHE
# =============================================================================

_cache: dict[str, Any] = {}
_cache_lock = threading.Lock()


def invalidate_cache(domain: str | None = None) -> None:
    """Drop cached settings (all domains when `domain` is None)."""
    with _cache_lock:
        if domain is None:
            _cache.clear()
        else:
            _cache.pop(domain, None)


def _load(domain: str):
    row = db.session.query(Setting).filter_by(key=domain).first()
    stored = row.value if row is not None and isinstance(row.value, dict) else {}
    cls = SETTINGS_TYPES[domain]
    known = {f.name for f in fields(cls)}
    # Stored rows were validated on write; ignore keys from older schemas
    try:
        return build_settings(domain, {k: v for k, v in stored.items() if k in known})
    except SettingsValidationError:
        return cls()


def get_settings(domain: str):
    if domain not in SETTINGS_TYPES:
        raise NotFoundError(f"Unknown settings domain: {domain}")
    with _cache_lock:
        cached = _cache.get(domain)
    if cached is not None:
        return cached
    settings = _load(domain)
    with _cache_lock:
        _cache[domain] = settings
    return settings


def get_store_settings() -> StoreSettings:
    return get_settings("store")


def get_shipping_settings() -> ShippingSettings:
    return get_settings("shipping")


def get_payment_settings() -> PaymentSettings:
    return get_settings("payment")


def get_seo_settings() -> SeoSettings:
    return get_settings("seo")


def get_all_settings() -> dict[str, dict]:
    return {domain: asdict(get_settings(domain)) for domain in SETTINGS_TYPES}


def update_settings(domain: str, values: dict, user_id: int | None = None):
    """
    Merge `values` onto the current settings, validate, persist, invalidate.

    Returns the new typed settings object.
    """
    settings = build_settings(domain, values, base=get_settings(domain))
    payload = asdict(settings)

    row = db.session.query(Setting).filter_by(key=domain).first()
    if row is None:
        db.session.add(Setting(key=domain, value=payload, updated_by_user_id=user_id, updated_at=utcnow()))
        try:
            db.session.commit()
        except IntegrityError:
            # Another writer created the row first; overwrite it
            db.session.rollback()
            row = db.session.query(Setting).filter_by(key=domain).one()
    if row is not None:
        row.value = payload
        row.updated_by_user_id = user_id
        row.updated_at = utcnow()
        db.session.commit()

    invalidate_cache(domain)
    return settings


def seed_defaults() -> int:
    """Create rows for any missing domains with default values. Returns rows created."""
    created = 0
    for domain, cls in SETTINGS_TYPES.items():
        if db.session.query(Setting.id).filter_by(key=domain).first() is None:
            db.session.add(Setting(key=domain, value=asdict(cls()), updated_at=utcnow()))
            created += 1
    db.session.commit()
    invalidate_cache()
    return created
