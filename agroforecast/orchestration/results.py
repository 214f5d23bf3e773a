"""
Tagged per-domain results produced by one comprehensive analysis.

A DomainResult either carries the domain's typed payload or, when the
predictor failed, an error message with zero confidence.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


class Domain(str, Enum):
    WEATHER = "weather"
    CROPS = "crops"
    SOIL = "soil"
    IRRIGATION = "irrigation"
    ENERGY = "energy"
    ALERTS = "alerts"

    @property
    def model_name(self) -> str:
        """Key used in the performance map."""
        return _MODEL_NAMES[self]


_MODEL_NAMES = {
    Domain.WEATHER: "weather",
    Domain.CROPS: "crop",
    Domain.SOIL: "soil",
    Domain.IRRIGATION: "irrigation",
    Domain.ENERGY: "energy",
    Domain.ALERTS: "alert",
}


@dataclass
class DomainResult(Generic[T]):
    domain: Domain
    payload: Optional[T] = None
    confidence: float = 0.0
    duration_ms: float = 0.0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.payload is not None

    @classmethod
    def failure(cls, domain: Domain, error: BaseException, duration_ms: float = 0.0) -> "DomainResult[T]":
        return cls(domain=domain, confidence=0.0, duration_ms=duration_ms, error=str(error) or type(error).__name__)

    def to_dict(self) -> Dict[str, Any]:
        if not self.ok:
            return {"error": self.error, "confidence": 0.0}
        data = self.payload.to_dict() if hasattr(self.payload, "to_dict") else {"value": self.payload}
        data.setdefault("confidence", round(self.confidence, 4))
        return data


def payload_of(result: Optional[DomainResult[T]]) -> Optional[T]:
    """The payload of a successful result, else None."""
    if result is None or not result.ok:
        return None
    return result.payload
