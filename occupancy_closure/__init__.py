"""
Closed single-season occupancy example.

Simulates detection/non-detection surveys from a logistic occupancy x
detection model and refits the same model to check that the generating
coefficients are recovered. See `python -m occupancy_closure.run --help`
for CLI usage.
"""

from .config import InvalidConfiguration, OccupancyConfig, get_default_config, load_config
from .fit import FitResult, fit_occupancy
from .io import OccupancyData, survey_to_data
from .simulate import SimulatedSurvey, generate, generate_survey

__version__ = "1.0.0"

__all__ = [
    "InvalidConfiguration",
    "OccupancyConfig",
    "get_default_config",
    "load_config",
    "FitResult",
    "fit_occupancy",
    "OccupancyData",
    "survey_to_data",
    "SimulatedSurvey",
    "generate",
    "generate_survey",
]
