"""
Services module initialization.
"""
from disaster_training.services.auth_service import AuthService
from disaster_training.services.training_service import TrainingService
from disaster_training.services.analytics_service import AnalyticsService
from disaster_training.services.system_service import SystemService

__all__ = [
    "AuthService",
    "TrainingService",
    "AnalyticsService",
    "SystemService",
]
