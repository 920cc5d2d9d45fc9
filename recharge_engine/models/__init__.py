"""Pydantic models for domain records, results, configuration and API payloads."""

# Plan catalogue and configuration models
from .plan import (
    AppConfig,
    EngineConfigFile,
    EngineSettings,
    PlanCategory,
    PlanDefinition,
    SchedulerConfig,
    StorageConfig,
    WhatsAppConfig,
)

# Recharge code models
from .recharge_code import (
    CodeStatus,
    InvalidCodeTransitionError,
    RechargeCode,
)

# Purchase models
from .purchase import (
    BuyerInfo,
    CustomerData,
    ExpiryReminders,
    InvalidPurchaseTransitionError,
    PaymentMethod,
    Purchase,
    PurchaseStatus,
    ReminderAlreadySentError,
    ReminderMilestone,
    ReminderRecord,
)

# Service result models
from .results import (
    AllocationResult,
    AssignmentResult,
    CheckoutOutcome,
    DashboardStats,
    FailureReason,
    ImportResult,
    PaymentResult,
    SendResult,
    SweepReport,
)

__all__ = [
    # Plans and configuration
    "AppConfig",
    "EngineConfigFile",
    "EngineSettings",
    "PlanCategory",
    "PlanDefinition",
    "SchedulerConfig",
    "StorageConfig",
    "WhatsAppConfig",
    # Recharge codes
    "CodeStatus",
    "InvalidCodeTransitionError",
    "RechargeCode",
    # Purchases
    "BuyerInfo",
    "CustomerData",
    "ExpiryReminders",
    "InvalidPurchaseTransitionError",
    "PaymentMethod",
    "Purchase",
    "PurchaseStatus",
    "ReminderAlreadySentError",
    "ReminderMilestone",
    "ReminderRecord",
    # Results
    "AllocationResult",
    "AssignmentResult",
    "CheckoutOutcome",
    "DashboardStats",
    "FailureReason",
    "ImportResult",
    "PaymentResult",
    "SendResult",
    "SweepReport",
]
