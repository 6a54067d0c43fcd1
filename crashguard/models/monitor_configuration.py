"""MonitorConfiguration data model for detection, countdown and delivery settings."""

from enum import Enum
from typing import Dict, Any, Optional
from pydantic import BaseModel, Field, field_validator, model_validator


DEFAULT_MESSAGE_TEMPLATE = "I may have been in an accident. My last known location: {link}"
DEFAULT_MAPS_URL_TEMPLATE = "https://maps.google.com/?q={latitude:.6f},{longitude:.6f}"
DEFAULT_UNAVAILABLE_TEXT = "I may have been in an accident. Location unavailable."


class SensorSourceKind(str, Enum):
    """Available accelerometer sources."""

    SIMULATED = "simulated"
    REPLAY = "replay"
    NONE = "none"


class MessagingProvider(str, Enum):
    """Available text message backends."""

    LOG = "log"
    TWILIO = "twilio"


class DetectionSettings(BaseModel):
    """Impact detection parameters."""

    threshold: float = Field(
        default=25.0,
        gt=0.0,
        le=500.0,
        description="Linear acceleration threshold (m/s^2); strict greater-than triggers"
    )
    smoothing_alpha: float = Field(
        default=0.8,
        gt=0.0,
        lt=1.0,
        description="Gravity low-pass smoothing factor"
    )


class CountdownSettings(BaseModel):
    """Cancellable countdown before escalation."""

    duration_ms: int = Field(
        default=30000,
        ge=1000,
        le=600000,
        description="Countdown length in milliseconds"
    )
    tick_interval_ms: int = Field(
        default=1000,
        ge=100,
        le=10000,
        description="Countdown tick interval in milliseconds"
    )

    @property
    def duration_seconds(self) -> int:
        return self.duration_ms // 1000


class LocationSettings(BaseModel):
    """Location resolution settings."""

    priority: str = Field(
        default="high_accuracy",
        pattern="^(high_accuracy|balanced|low_power)$",
        description="Priority requested for a fresh fix"
    )
    fresh_fix_timeout_s: float = Field(
        default=10.0,
        gt=0.0,
        le=120.0,
        description="Maximum wait for a fresh fix"
    )
    static_latitude: Optional[float] = Field(default=None, ge=-90.0, le=90.0)
    static_longitude: Optional[float] = Field(default=None, ge=-180.0, le=180.0)
    geolocation_url: Optional[str] = Field(
        default=None,
        description="HTTP geolocation endpoint used for fresh fixes"
    )

    @model_validator(mode="after")
    def validate_static_pair(self) -> "LocationSettings":
        """Static coordinates come as a pair."""
        if (self.static_latitude is None) != (self.static_longitude is None):
            raise ValueError("static_latitude and static_longitude must be set together")
        return self

    @property
    def static_fix_configured(self) -> bool:
        return self.static_latitude is not None


class MessageSettings(BaseModel):
    """Emergency message templates."""

    template: str = Field(default=DEFAULT_MESSAGE_TEMPLATE, min_length=1)
    maps_url_template: str = Field(default=DEFAULT_MAPS_URL_TEMPLATE, min_length=1)
    unavailable_text: str = Field(default=DEFAULT_UNAVAILABLE_TEXT, min_length=1)

    @field_validator('template')
    @classmethod
    def validate_template(cls, v: str) -> str:
        """Template must place the link."""
        if "{link}" not in v:
            raise ValueError("template must contain a {link} placeholder")
        return v

    @field_validator('maps_url_template')
    @classmethod
    def validate_maps_url_template(cls, v: str) -> str:
        """Template must place both coordinates."""
        if "{latitude" not in v or "{longitude" not in v:
            raise ValueError("maps_url_template must contain {latitude} and {longitude}")
        return v


class MessagingSettings(BaseModel):
    """Text message delivery settings."""

    provider: MessagingProvider = Field(default=MessagingProvider.LOG)
    from_number: Optional[str] = Field(
        default=None,
        description="Sender number for providers that need one"
    )


class SensorSettings(BaseModel):
    """Accelerometer source settings."""

    source: SensorSourceKind = Field(default=SensorSourceKind.SIMULATED)
    sample_rate_hz: float = Field(
        default=5.0,
        gt=0.0,
        le=500.0,
        description="Sample delivery rate"
    )
    replay_path: Optional[str] = Field(default=None, description="CSV file of x,y,z rows")

    @property
    def sample_interval_ms(self) -> float:
        return 1000.0 / self.sample_rate_hz


class MonitorConfiguration(BaseModel):
    """Complete crash monitor configuration."""

    model_config = {
        "validate_assignment": True,
        "extra": "forbid",
        "json_schema_extra": {
            "example": {
                "contact": "+15551234567",
                "detection": {"threshold": 25.0, "smoothing_alpha": 0.8},
                "countdown": {"duration_ms": 30000},
                "messaging": {"provider": "log"}
            }
        }
    }

    contact: str = Field(default="", description="Emergency contact phone number")

    detection: DetectionSettings = Field(default_factory=DetectionSettings)
    countdown: CountdownSettings = Field(default_factory=CountdownSettings)
    location: LocationSettings = Field(default_factory=LocationSettings)
    message: MessageSettings = Field(default_factory=MessageSettings)
    messaging: MessagingSettings = Field(default_factory=MessagingSettings)
    sensor: SensorSettings = Field(default_factory=SensorSettings)

    # System settings
    enable_debug_logging: bool = Field(default=False)
    api_host: str = Field(default="localhost")
    api_port: int = Field(default=5002, ge=1024, le=65535)

    @field_validator('contact')
    @classmethod
    def validate_contact(cls, v: str) -> str:
        return v.strip()

    @property
    def has_contact(self) -> bool:
        return bool(self.contact)

    def export_dict(self) -> Dict[str, Any]:
        """Export configuration as a plain dictionary."""
        return self.model_dump(mode='json')
