"""Launch Tracker - API Routers"""
from .predict import router as predict_router
from .stats import router as stats_router
from .degradation import router as degradation_router
from .privacy import router as privacy_router
from .rules import router as rules_router

__all__ = [
    "predict_router",
    "stats_router",
    "degradation_router",
    "privacy_router",
    "rules_router",
]
