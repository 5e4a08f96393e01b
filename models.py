"""
DosiFlow: Data Dictionary & Record Definitions
==============================================
This module defines the entire state space of the injectable-dose calculator.
It includes the Catalog (immutable reference data, loaded once), the Session
(per-patient inputs, replaced on every change) and the Outputs (result values
returned by every engine component).

NO LOGIC is implemented here beyond input validation. Computation lives in
dosing.py, interactions.py, safety.py, syndromes.py, adjuvant.py and
selection.py.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple, Union

from constants import VERSION, AGE_CONSTANTS, AgeUnit, Route, SyringeTier


class CatalogValidationError(ValueError):
    """Raised when reference data fails validation at load. Carries every problem found."""

    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        super().__init__(f"{len(self.problems)} catalog problem(s): " + "; ".join(self.problems))


class DataTypeError(TypeError):
    """Raised when inputs are wrong python types (str instead of float)."""
    pass


class PresetSlotError(IndexError):
    """Raised when a preset slot index falls outside the bounded store."""
    pass


# --- 1. ENUMS (Standardizing the Inputs) ---

class DoseUnit(Enum):
    MG = "mg"
    IU = "IU"


class InteractionLevel(Enum):
    NONE = "none"
    CAUTION = "caution"
    DANGEROUS = "dangerous"
    CONTRAINDICATED = "contraindicated"

    @property
    def rank(self) -> int:
        # contraindicated and dangerous share the top of the order
        return {"none": 0, "caution": 1, "dangerous": 2, "contraindicated": 2}[self.value]

    @property
    def is_blocking(self) -> bool:
        return self.rank >= 2

    @classmethod
    def from_compatibility(cls, value: str) -> "InteractionLevel":
        """Mixing tables say 'compatible' where interaction tables say 'none'."""
        if value == "compatible":
            return cls.NONE
        return cls(value)


class ConditionSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return {"low": 0, "medium": 1, "high": 2}[self.value]


class GateStatus(Enum):
    NONE = "none"
    CAUTION = "caution"
    BLOCKED = "blocked"


class DrugStatus(Enum):
    AVAILABLE = "available"
    SELECTED = "selected"
    CAUTION = "caution"
    BLOCKED_BY_INTERACTION = "blocked_by_interaction"
    BLOCKED_BY_CONDITION = "blocked_by_condition"


class DoseOutcome(Enum):
    OK = "ok"
    UNSTRUCTURED = "unstructured"          # Legacy free text, returned verbatim
    NO_DOSING = "no_dosing"                # No tier for this age / population
    NOT_FOUND = "not_found"
    MISSING_PRESENTATION = "missing_presentation"


class DoseSource(Enum):
    STRUCTURED = "structured"
    LEGACY_TEXT = "legacy_text"


class AdjuvantOption(Enum):
    RECOMMENDED = "recommended"
    REDUCED = "reduced"


class CombinationCoverage(Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"


# --- 2. CATALOG LAYER (Immutable Reference Data) ---

@dataclass(frozen=True)
class Presentation:
    """A commercial vial/ampoule: `concentration` units contained in `volume_ml`."""
    name: str
    concentration: float
    volume_ml: float
    unit: DoseUnit = DoseUnit.MG
    is_principal: bool = False

    def __post_init__(self):
        if self.concentration <= 0:
            raise ValueError(f"Presentation '{self.name}': concentration must be positive")
        if self.volume_ml <= 0:
            raise ValueError(f"Presentation '{self.name}': volume must be positive")


# Dose amounts: a tagged union instead of optional min/max fields
@dataclass(frozen=True)
class FixedDose:
    dose_min: float
    dose_max: Optional[float] = None
    unit: DoseUnit = DoseUnit.MG


@dataclass(frozen=True)
class PerWeightMgDose:
    dose_min_per_kg: float
    dose_max_per_kg: Optional[float] = None
    unit: DoseUnit = DoseUnit.MG


@dataclass(frozen=True)
class PerWeightIUDose:
    dose_min_per_kg: float
    dose_max_per_kg: Optional[float] = None
    unit: DoseUnit = DoseUnit.IU


DoseAmount = Union[FixedDose, PerWeightMgDose, PerWeightIUDose]


@dataclass(frozen=True)
class AdultStandardRule:
    amount: DoseAmount
    max_dose_per_administration: Optional[float] = None
    frequency_hours: Tuple[int, ...] = ()


@dataclass(frozen=True)
class ElderlyRule:
    """Either an explicit elderly amount or a reduction of the adult standard dose."""
    amount: Optional[DoseAmount] = None
    reduction_factor: Optional[float] = None
    max_dose_per_administration: Optional[float] = None
    frequency_hours: Tuple[int, ...] = ()

    def __post_init__(self):
        if (self.amount is None) == (self.reduction_factor is None):
            raise ValueError("Elderly rule needs exactly one of amount or reduction_factor")
        if self.reduction_factor is not None and not (0 < self.reduction_factor <= 1):
            raise ValueError(f"Invalid reduction factor: {self.reduction_factor}")


@dataclass(frozen=True)
class PediatricTier:
    age_min_months: float
    age_max_months: float
    amount: DoseAmount
    max_dose_per_administration: Optional[float] = None
    allowed_routes: Tuple[Route, ...] = ()
    frequency_hours: Tuple[int, ...] = ()

    def __post_init__(self):
        if self.age_min_months > self.age_max_months:
            raise ValueError(f"Pediatric tier {self.age_min_months}-{self.age_max_months} months is inverted")


@dataclass(frozen=True)
class DoseRule:
    adult_standard: Optional[AdultStandardRule] = None
    adult_elderly: Optional[ElderlyRule] = None
    pediatric: Tuple[PediatricTier, ...] = ()   # Ordered: first match wins


@dataclass(frozen=True)
class LegacyPediatricDose:
    """Unconverted free-text pediatric dose, kept only for verbatim display."""
    age_min: float
    age_max: float
    age_unit: AgeUnit
    text: str


@dataclass(frozen=True)
class Drug:
    id: str
    name: str
    drug_class: str
    routes: Tuple[Route, ...]
    presentations: Tuple[Presentation, ...]
    dose_rule: Optional[DoseRule] = None

    # Legacy fields (fallback only)
    legacy_adult_dose: Optional[str] = None
    legacy_pediatric_doses: Tuple[LegacyPediatricDose, ...] = ()

    # Label lookup name map
    label_generic_name: Optional[str] = None
    label_brand_names: Tuple[str, ...] = ()
    label_note: Optional[str] = None
    label_approved: bool = True     # False: no label exists to fetch (e.g. not marketed in the US)


@dataclass(frozen=True)
class InteractionRecord:
    drug_ids: FrozenSet[str]
    level: InteractionLevel
    description: str
    advice: str = ""


@dataclass(frozen=True)
class AgeBand:
    age_min_months: float
    age_max_months: float
    level: InteractionLevel


@dataclass(frozen=True)
class PediatricInteractionRecord:
    drug_ids: FrozenSet[str]
    bands: Tuple[AgeBand, ...]
    description: str
    advice: str = ""


@dataclass(frozen=True)
class MixCompatibilityRecord:
    """Flat `compatibility` or age-banded `bands`; never both."""
    drug_ids: FrozenSet[str]
    comment: str
    compatibility: Optional[InteractionLevel] = None
    bands: Tuple[AgeBand, ...] = ()


@dataclass(frozen=True)
class Condition:
    id: str
    label: str


@dataclass(frozen=True)
class ConditionInteractionRecord:
    drug_id: str
    condition: str
    severity: ConditionSeverity
    blocks: bool
    message: str
    recommendation: str = ""


@dataclass(frozen=True)
class Symptom:
    id: str
    label: str


@dataclass(frozen=True)
class SymptomGroup:
    id: str
    label: str
    symptoms: Tuple[Symptom, ...]


@dataclass(frozen=True)
class RedFlag:
    symptom: str
    message: str


@dataclass(frozen=True)
class ForbiddenDrug:
    drug_id: str
    reason: str


@dataclass(frozen=True)
class SyndromeRule:
    """Epidemiological alert (dengue, chikungunya...)."""
    id: str
    name: str
    cardinal_symptoms: Tuple[str, ...]
    support_symptoms: Tuple[str, ...]
    min_cardinal_threshold: int
    red_flags: Tuple[RedFlag, ...] = ()
    recommended_drugs: Tuple[str, ...] = ()
    forbidden_drugs: Tuple[ForbiddenDrug, ...] = ()
    differential_guide: str = ""
    management_guide: str = ""


@dataclass(frozen=True)
class ClinicalSyndromeRule:
    """Differential clinical picture that drives drug-panel suggestions."""
    id: str
    name: str
    description: str
    cardinal_symptoms: Tuple[str, ...]
    support_symptoms: Tuple[str, ...]
    min_cardinal_threshold: int
    recommended_drugs: Tuple[str, ...] = ()
    forbidden_drugs: Tuple[ForbiddenDrug, ...] = ()
    clinical_notes: str = ""
    is_emergency: bool = False


@dataclass(frozen=True)
class VolumeBreakpoint:
    dose_threshold: float
    volume_ml: float


@dataclass(frozen=True)
class AdjuvantGuideEntry:
    drug_id: str
    recommended: bool
    evidence_level: Optional[str] = None
    note: Optional[str] = None
    warning: Optional[str] = None
    not_recommended_reason: Optional[str] = None
    weight_min_kg: Optional[float] = None
    age_min_months: Optional[float] = None
    restriction_note: Optional[str] = None
    volume_breakpoints: Tuple[VolumeBreakpoint, ...] = ()


@dataclass(frozen=True)
class DiluentProportion:
    dose: float
    volume_ml: float


@dataclass(frozen=True)
class DiluentOption:
    name: str
    label: str
    proportions: Tuple[DiluentProportion, ...]
    age_min_months: Optional[float] = None
    age_max_months: Optional[float] = None
    for_im: bool = True


@dataclass(frozen=True)
class SpecialDilution:
    drug_id: str
    options: Tuple[DiluentOption, ...]
    fallback_to_first: bool = False
    defines_volume: bool = False    # Diluent volume replaces the dose volume in the syringe


@dataclass(frozen=True)
class CommonCombination:
    id: str
    name: str
    drug_ids: Tuple[str, ...]
    indication: str = ""


# --- 3. SESSION LAYER (What the Clinician Enters) ---

@dataclass(frozen=True)
class PatientContext:
    """
    Bedside inputs. Immutable: every change produces a new context.
    """
    weight_kg: float
    age: float
    age_unit: AgeUnit = AgeUnit.YEARS
    route: Route = Route.IM

    def __post_init__(self):
        for name in ("weight_kg", "age"):
            val = getattr(self, name)
            if isinstance(val, bool) or not isinstance(val, (int, float)):
                raise DataTypeError(f"Field '{name}' must be numeric, got {type(val)}")
        if not isinstance(self.age_unit, AgeUnit):
            raise DataTypeError(f"age_unit must be AgeUnit, got {type(self.age_unit)}")
        if not isinstance(self.route, Route):
            raise DataTypeError(f"route must be Route, got {type(self.route)}")

        if not (0.3 <= self.weight_kg <= 250.0):
            raise ValueError(f"Invalid weight: {self.weight_kg}")
        max_age = 120 if self.age_unit == AgeUnit.YEARS else 1440
        if not (0 <= self.age <= max_age):
            raise ValueError(f"Invalid age: {self.age} {self.age_unit.value}")

    @property
    def age_months(self) -> float:
        if self.age_unit == AgeUnit.YEARS:
            return self.age * AGE_CONSTANTS.MONTHS_PER_YEAR
        return self.age

    @property
    def is_pediatric(self) -> bool:
        return self.age_months < AGE_CONSTANTS.ADULT_MONTHS


@dataclass(frozen=True)
class DiluentChoice:
    option: DiluentOption
    proportion: DiluentProportion


@dataclass(frozen=True)
class SelectionState:
    """Ordered selection plus per-drug presentation and diluent choices."""
    drug_ids: Tuple[str, ...] = ()
    presentations: Dict[str, Presentation] = field(default_factory=dict)
    diluents: Dict[str, DiluentChoice] = field(default_factory=dict)


@dataclass(frozen=True)
class Session:
    patient: PatientContext
    selection: SelectionState = field(default_factory=SelectionState)
    conditions: Tuple[str, ...] = ()
    symptoms: Tuple[str, ...] = ()

    # Caller-held additive flag; force-cleared when the plan turns incompatible
    adjuvant_active: bool = False
    adjuvant_option: AdjuvantOption = AdjuvantOption.RECOMMENDED


# --- 4. OUTPUT LAYER (The Actionable Results) ---

@dataclass(frozen=True)
class SnapInfo:
    original: float
    snapped: float
    tier: SyringeTier
    percent_difference: float
    was_rounded: bool


@dataclass
class DoseResult:
    drug_id: str
    outcome: DoseOutcome
    blocked: bool = False
    dose: Optional[float] = None
    unit: Optional[DoseUnit] = None
    volume_ml: Optional[float] = None
    snap: Optional[SnapInfo] = None
    presentation: Optional[Presentation] = None
    is_adult: bool = False
    is_elderly: bool = False
    precaution: bool = False
    frequency_text: str = ""
    message: str = ""
    advisories: List[str] = field(default_factory=list)
    source: Optional[DoseSource] = None
    legacy_text: Optional[str] = None


@dataclass(frozen=True)
class InteractionFinding:
    drug_ids: Tuple[str, str]
    name: str
    level: InteractionLevel
    description: str
    advice: str
    pediatric: bool = False
    mix: bool = False


@dataclass(frozen=True)
class ConditionAlert:
    drug_id: str
    condition: str
    severity: ConditionSeverity
    blocks: bool
    message: str
    recommendation: str


@dataclass
class EpidemiologicalMatch:
    rule_id: str
    name: str
    confidence: int
    cardinal_matches: List[str]
    support_matches: List[str]
    active_red_flags: List[RedFlag]
    recommended_drugs: List[str]
    forbidden_drugs: List[ForbiddenDrug]
    differential_guide: str
    management_guide: str


@dataclass
class ClinicalSyndromeMatch:
    rule_id: str
    name: str
    description: str
    confidence: int
    cardinal_matches: List[str]
    support_matches: List[str]
    recommended_drugs: List[str]
    forbidden_drugs: List[ForbiddenDrug]
    clinical_notes: str
    is_emergency: bool


@dataclass(frozen=True)
class ForbiddenBy:
    syndrome: str
    reason: str


@dataclass
class DrugPanelAnnotation:
    """Display-only suggestion; never changes the selection."""
    drug_id: str
    recommended_by: List[str] = field(default_factory=list)
    forbidden_by: List[ForbiddenBy] = field(default_factory=list)

    @property
    def forbidden(self) -> bool:
        return bool(self.forbidden_by)


@dataclass
class ProhibitionCheck:
    forbidden: bool
    alerts: List[ForbiddenBy] = field(default_factory=list)


@dataclass(frozen=True)
class AdjuvantContribution:
    drug_id: str
    volume_ml: float
    dose_reference: Optional[float] = None
    restriction: Optional[str] = None


@dataclass
class AdjuvantCompatibility:
    compatible: bool
    reasons: List[str] = field(default_factory=list)
    summary: str = ""


@dataclass
class AdjuvantPlan:
    compatible: bool
    summary: str = ""
    reasons: List[str] = field(default_factory=list)
    raw_combined_volume: float = 0.0
    max_safe_volume: Optional[float] = None
    recommended_volume: Optional[float] = None
    reduced_volume: Optional[float] = None
    was_capped: bool = False
    breakdown: List[AdjuvantContribution] = field(default_factory=list)
    advisories: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class AdjuvantNote:
    drug_id: str
    recommended: bool
    evidence_level: Optional[str]
    note: Optional[str]
    warning: Optional[str]
    not_recommended_reason: Optional[str]


@dataclass
class Transition:
    """Outcome of a selection reducer. A rejected transition carries the unchanged session."""
    session: Session
    accepted: bool
    alert: Optional[str] = None
    removed: List[str] = field(default_factory=list)


@dataclass
class CombinationMatch:
    combination: CommonCombination
    coverage: CombinationCoverage
    matched_drug_ids: List[str]


@dataclass
class SyringeTotal:
    volume_ml: float
    adjuvant_volume_ml: float
    capacity: SyringeTier


@dataclass
class AuditLog:
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())
    action: str = "session_evaluation"
    inputs_hash: int = 0
    model_version: str = VERSION


@dataclass
class EngineOutput:
    """
    Everything the clinician sees for the current session, recomputed from scratch.
    """
    session: Session
    doses: Dict[str, DoseResult]
    interactions: List[InteractionFinding]
    condition_alerts: List[ConditionAlert]
    epidemiological_matches: List[EpidemiologicalMatch]
    clinical_matches: List[ClinicalSyndromeMatch]
    drug_panel: Dict[str, DrugPanelAnnotation]
    combinations: List[CombinationMatch]
    adjuvant_plan: AdjuvantPlan
    adjuvant_notes: List[AdjuvantNote]
    adjuvant_volume_ml: float
    syringe_total: SyringeTotal
    drug_statuses: Dict[str, DrugStatus]
    audit_log: AuditLog = field(default_factory=AuditLog)
