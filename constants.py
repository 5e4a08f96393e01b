import os
from enum import Enum
from dataclasses import dataclass

VERSION = "1.0.0"

_HERE = os.path.dirname(os.path.abspath(__file__))


class Route(Enum):
    IM = "IM"
    IV = "IV"
    SC = "SC"


class AgeUnit(Enum):
    MONTHS = "months"
    YEARS = "years"


@dataclass(frozen=True)
class SyringeTier:
    capacity_ml: float
    step_ml: float   # Smallest printed graduation
    label: str


class AGE_CONSTANTS:
    MONTHS_PER_YEAR = 12
    ADULT_MONTHS = 216     # >= 18 years
    ELDERLY_MONTHS = 780   # >= 65 years


class LEGACY_CONSTANTS:
    # Legacy adults receive the full principal vial; elderly 60% of it
    ELDERLY_VIAL_FACTOR = 0.6


class SYRINGE_LIBRARY:
    """
    Real syringe graduations, smallest first.
    A volume is always measured in the smallest syringe that holds it.
    """
    TIERS = (
        SyringeTier(capacity_ml=1.0, step_ml=0.05, label="1 mL"),
        SyringeTier(capacity_ml=3.0, step_ml=0.1, label="3 mL"),
        SyringeTier(capacity_ml=5.0, step_ml=0.2, label="5 mL"),
        SyringeTier(capacity_ml=10.0, step_ml=0.5, label="10 mL"),
        SyringeTier(capacity_ml=20.0, step_ml=1.0, label="20 mL"),
    )
    ROUNDING_TOLERANCE_ML = 0.001


class ADJUVANT_CONSTANTS:
    # Lidocaine 1% w/v = 10 mg/mL; ceiling 4.5 mg/kg -> 0.45 mL/kg
    MAX_DOSE_MG_PER_KG = 4.5
    CONCENTRATION_MG_PER_ML = 10.0
    MAX_VOLUME_ML_PER_KG = MAX_DOSE_MG_PER_KG / CONCENTRATION_MG_PER_ML
    REDUCED_OFFER_THRESHOLD_ML = 2.0
    REDUCTION_FACTOR = 0.75
    ALLERGY_CONDITION = "anesthetic_allergy"
    ROUTE = Route.IM


class LABEL_LOOKUP_CONSTANTS:
    BASE_URL = "https://api.fda.gov/drug/label.json"
    CACHE_TTL_SECONDS = 24 * 60 * 60
    MIN_INTERVAL_SECONDS = 0.5
    TIMEOUT_SECONDS = 10


class PRESET_CONSTANTS:
    MAX_SLOTS = 10


# --- Deployment overrides ---
CATALOG_PATH = os.environ.get("DOSIFLOW_CATALOG_PATH", os.path.join(_HERE, "data", "catalog.json"))
PRESET_PATH = os.environ.get("DOSIFLOW_PRESET_PATH", os.path.join(_HERE, "data", "presets.json"))
LOG_LEVEL = os.environ.get("DOSIFLOW_LOG_LEVEL", "INFO")
