"""Motion sample and impact event models."""

import math
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field, computed_field


class DetectorState(str, Enum):
    """Impact detector lifecycle states."""

    IDLE = "idle"
    ARMED = "armed"
    SUPPRESSED = "suppressed"


class Sample(BaseModel):
    """Single 3-axis accelerometer sample (m/s^2)."""

    model_config = {
        "frozen": True,
        "extra": "forbid"
    }

    x: float = Field(description="X axis acceleration")
    y: float = Field(description="Y axis acceleration")
    z: float = Field(description="Z axis acceleration")
    timestamp: datetime = Field(default_factory=datetime.now)

    @classmethod
    def from_values(cls, values) -> "Sample":
        """Build a sample from an (x, y, z) sequence."""
        x, y, z = values[:3]
        return cls(x=float(x), y=float(y), z=float(z))

    @property
    def magnitude(self) -> float:
        """Raw acceleration magnitude, gravity included."""
        return math.sqrt(self.x * self.x + self.y * self.y + self.z * self.z)

    def as_tuple(self) -> tuple:
        return (self.x, self.y, self.z)

    def __str__(self) -> str:
        return f"Sample({self.x:.2f}, {self.y:.2f}, {self.z:.2f})"


class ImpactEvent(BaseModel):
    """Discrete impact signal emitted by the detector."""

    model_config = {
        "frozen": True,
        "json_encoders": {datetime: lambda v: v.isoformat()}
    }

    magnitude: float = Field(ge=0.0, description="Linear acceleration magnitude")
    threshold: float = Field(gt=0.0, description="Threshold that was exceeded")
    timestamp: datetime = Field(default_factory=datetime.now)
    sample: Sample

    @computed_field
    @property
    def excess(self) -> float:
        """How far the magnitude exceeded the threshold."""
        return round(self.magnitude - self.threshold, 3)

    def __str__(self) -> str:
        return f"Impact {self.magnitude:.1f} > {self.threshold:.1f}"
