"""
domain — Per-concern farming predictors sharing one lifecycle contract.
"""

from .base import DomainPredictor
from .crop import CropInput, CropRecommendation, CropRecommender, Season
from .energy import EnergyInput, EnergyOptimizer, EnergyPlan, EquipmentUsage
from .irrigation import IrrigationInput, IrrigationOptimizer, IrrigationPlan
from .soil import SoilHealthPredictor, SoilHealthReport, SoilInput

__all__ = [
    "DomainPredictor",
    "CropInput",
    "CropRecommendation",
    "CropRecommender",
    "Season",
    "EnergyInput",
    "EnergyOptimizer",
    "EnergyPlan",
    "EquipmentUsage",
    "IrrigationInput",
    "IrrigationOptimizer",
    "IrrigationPlan",
    "SoilHealthPredictor",
    "SoilHealthReport",
    "SoilInput",
]
