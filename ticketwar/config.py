"""
Run configuration (config.json) and session state (session.json) loading.
"""

import json
import os
import re
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ticketwar.extraction import DEFAULT_EXCLUDED_IDS
from ticketwar.queue_gate import DEFAULT_QUEUE_MARKERS


CONFIG_FILE = Path(os.getenv("CONFIG_FILE", "config.json"))
SESSION_FILE = Path(os.getenv("SESSION_FILE", "session.json"))


class ConfigError(Exception):
    """Missing or invalid config.json / session.json."""


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class PersonalData(_Frozen):
    """Identity fields typed into the checkout form."""
    name: str
    nik: str = Field(description="National ID number")
    email: str
    phone: str
    domisili: Optional[str] = None
    gender: Optional[str] = None
    dob: Optional[str] = Field(default=None, description="Date of birth, YYYY-MM-DD")

    @field_validator("phone", "nik", mode="before")
    @classmethod
    def _as_string(cls, value: Any) -> Any:
        # A numeric JSON value would already have lost its leading zero
        if isinstance(value, int):
            raise ValueError("must be a quoted string to keep leading zeros")
        return value

    @field_validator("gender")
    @classmethod
    def _gender(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip().lower()
        if value not in ("male", "female"):
            raise ValueError("gender must be 'male' or 'female'")
        return value

    @field_validator("dob")
    @classmethod
    def _dob(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        if not re.fullmatch(r"\d{4}-\d{2}-\d{2}", value):
            raise ValueError("dob must be YYYY-MM-DD")
        date.fromisoformat(value)
        return value

    @property
    def birth_date(self) -> Optional[date]:
        return date.fromisoformat(self.dob) if self.dob else None


class PaymentPreference(_Frozen):
    """Two-level payment choice: category (accordion) then sub-method."""
    category: str = "Virtual Account"
    method: str = "BCA"
    # Zero-based radio index used when no sub-method text matches
    fallback_index: int = Field(default=1, alias="fallbackIndex", ge=0)


class Settings(_Frozen):
    headless: bool = False
    poll_interval_ms: int = Field(default=100, alias="pollIntervalMs", gt=0)
    timeout: int = Field(default=30000, gt=0, description="Navigation and bounded wait timeout in ms")
    queue_markers: List[str] = Field(default_factory=lambda: list(DEFAULT_QUEUE_MARKERS), alias="queueMarkers")
    excluded_ids: List[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDED_IDS), alias="trackingIds")
    widget_urls: List[str] = Field(default_factory=list, alias="widgetUrls")

    @property
    def poll_interval(self) -> float:
        return self.poll_interval_ms / 1000


class AcquisitionConfig(_Frozen):
    """Immutable configuration for one run."""
    target_url: str = Field(alias="targetUrl")
    category_keywords: List[str] = Field(default_factory=list, alias="categoryKeywords")
    ticket_amount: int = Field(default=1, alias="ticketAmount", ge=1)
    personal_data: PersonalData = Field(alias="personalData")
    payment: PaymentPreference = Field(default_factory=PaymentPreference)
    settings: Settings = Field(default_factory=Settings)

    @field_validator("target_url")
    @classmethod
    def _url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("targetUrl must be an http(s) URL")
        return value

    def widget_urls(self) -> List[str]:
        """
        Widget URL templates expanded with the event slug.

        Templates use `{slug}`, the path segment after /event/ in targetUrl.
        """
        if "/event/" not in self.target_url:
            return []
        slug = self.target_url.split("/event/", 1)[1].strip("/")
        if not slug:
            return []
        return [template.format(slug=slug) for template in self.settings.widget_urls]


def _read_json(path: Path, hint: str) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"{path} not found! {hint}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"{path} is not valid JSON: {e}") from e


def load_config(path: Path = CONFIG_FILE) -> AcquisitionConfig:
    data = _read_json(path, "Copy config.example.json to config.json and fill in your details.")
    try:
        return AcquisitionConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"{path} is invalid:\n{e}") from e


def load_session(path: Path = SESSION_FILE) -> Dict[str, Any]:
    """Browser storage state (cookies + origins), passed to the context as is."""
    data = _read_json(path, "Log in once and save the browser storage state to this file.")
    if not isinstance(data, dict) or "cookies" not in data:
        raise ConfigError(f"{path} does not look like a browser storage state")
    return data
