"""Launch Tracker - Data Models"""
from .db_models import PredictionDB, ServerLogDB, CapacityCounterDB

__all__ = ["PredictionDB", "ServerLogDB", "CapacityCounterDB"]
