"""Plan catalogue and engine configuration models.

Models from engine.yaml configuration.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

DEFAULT_APP_NAME = "App Padrão"


class PlanCategory(str, Enum):
    """Plan categories known to the catalogue."""

    RECHARGE = "recharge"
    MASTER_QUALIFICATION = "master_qualification"
    DATA_PACKAGE = "data_package"
    APP_PLAN = "app_plan"


class AppConfig(BaseModel):
    """Application associated with a plan."""

    app_name: str = Field(default=DEFAULT_APP_NAME, description="Display name of the app")
    has_app: bool = Field(default=False, description="Whether the plan ships an app")


class PlanDefinition(BaseModel):
    """Priced product definition that recharge codes are pooled under."""

    id: str = Field(..., description="Plan identifier")
    name: str = Field(..., description="Human-readable plan name")
    description: str = Field(default="", description="Plan description")
    value: Decimal = Field(..., ge=0, description="Price of one code of this plan")
    validity_days: int = Field(..., gt=0, description="Days a purchase of this plan stays valid")
    category: PlanCategory = Field(default=PlanCategory.RECHARGE, description="Plan category")
    is_active: bool = Field(default=True, description="Whether the plan is on sale")
    app_config: Optional[AppConfig] = Field(None, description="Associated app, if any")

    @property
    def app_name(self) -> str:
        """App label copied onto codes at import time."""
        if self.app_config is None or not self.app_config.app_name:
            return DEFAULT_APP_NAME
        return self.app_config.app_name

    class Config:
        json_schema_extra = {
            "example": {
                "id": "recarga-mensal",
                "name": "Recarga Mensal",
                "description": "30 dias de acesso",
                "value": "29.90",
                "validity_days": 30,
                "category": "recharge",
                "is_active": True,
                "app_config": {"app_name": "TV Box Pro", "has_app": True},
            }
        }


class EngineSettings(BaseModel):
    """Allocation and calendar behaviour."""

    timezone: str = Field(default="America/Sao_Paulo", description="IANA timezone for calendar days")
    code_validity_days: int = Field(default=30, gt=0, description="Fixed horizon stamped on imported codes")
    pending_delivery_reason: str = Field(
        default="no_available_codes",
        description="Reason recorded on purchases parked for manual delivery",
    )
    default_reseller_id: str = Field(default="system", description="Reseller used when none is given")


class StorageConfig(BaseModel):
    """Persistence backend selection."""

    backend: str = Field(default="memory", description="'memory' or 'sql'")
    url: str = Field(default="sqlite:///recharge_engine.db", description="SQLAlchemy database URL")
    echo: bool = Field(default=False, description="Echo SQL statements")


class SchedulerConfig(BaseModel):
    """Reminder scheduler behaviour."""

    enabled: bool = Field(default=False, description="Start the background scheduler with the app")
    interval_seconds: int = Field(default=86400, gt=0, description="Seconds between ticks")
    send_timeout_seconds: float = Field(default=15.0, gt=0, description="Max wait for one reminder send")
    max_workers: int = Field(default=4, gt=0, description="Concurrent reminder sends per sweep")
    expire_codes: bool = Field(default=True, description="Run the code expiry pass on every tick")


class WhatsAppConfig(BaseModel):
    """Z-API WhatsApp integration."""

    is_active: bool = Field(default=False, description="Whether messages may be sent")
    api_key: str = Field(default="", description="Z-API instance token")
    instance_id: str = Field(default="", description="Z-API instance id")
    client_token: Optional[str] = Field(None, description="Client-Token header (defaults to api_key)")
    base_url: str = Field(default="https://api.z-api.io", description="Z-API base URL")
    country_code: str = Field(default="55", description="Prefix added to phones without one")
    timeout_seconds: float = Field(default=10.0, gt=0, description="HTTP timeout")

    @property
    def is_configured(self) -> bool:
        """True when active and both credentials are present."""
        return bool(self.is_active and self.api_key and self.instance_id)


class EngineConfigFile(BaseModel):
    """Complete engine.yaml configuration."""

    company_name: str = Field(default="Sistema de Recarga Pro", description="Signature on customer messages")
    plans: list[PlanDefinition] = Field(default_factory=list, description="Plan catalogue")
    engine: EngineSettings = Field(default_factory=EngineSettings)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    whatsapp: WhatsAppConfig = Field(default_factory=WhatsAppConfig)
