from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from wikigate.config import WikigateConfig


@dataclass(frozen=True)
class HealthReport:
    status: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "details": dict(self.details)}


def liveness(*, component: str) -> HealthReport:
    return HealthReport(status="OK", details={"component": component})


def readiness(*, component: str, config: WikigateConfig, oidc_enabled: bool) -> HealthReport:
    """Ready once config is loaded; reports which config revision is being enforced."""
    return HealthReport(
        status="OK",
        details={
            "component": component,
            "system_id": config.system_id,
            "config_sha256": config.config_sha256,
            "oidc_enabled": oidc_enabled,
        },
    )
