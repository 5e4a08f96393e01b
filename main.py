# main.py

import logging
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from constants import LOG_LEVEL, VERSION, AgeUnit, Route
from catalog import get_catalog
from dosing import DoseCalculator
from engine import DosiFlowEngine
from label_lookup import CachedLabelLookup
from models import AdjuvantOption, PatientContext, Session
from presets import JsonFilePresetStore, Preset
from selection import SelectionStateMachine
from syndromes import SyndromeMatcher

# --- 1. CONFIGURATION & LOGGING ---
logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger("dosiflow-api")

app = FastAPI(
    title="DosiFlow API",
    version=VERSION,
    description="Injectable dose calculator with interaction, condition and syndrome checks. \n\n"
                "**WARNING**: Decision Support Tool Only. Final responsibility rests with the prescriber.",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

preset_store = JsonFilePresetStore()
label_lookup: Optional[CachedLabelLookup] = None


def get_label_lookup() -> CachedLabelLookup:
    global label_lookup
    if label_lookup is None:
        label_lookup = CachedLabelLookup(get_catalog())
    return label_lookup


@app.get("/")
def read_root():
    return {"status": "active", "message": "DosiFlow API is running successfully!"}


@app.get("/health")
def health_check():
    return {"status": "active", "version": VERSION, "module": "dosiflow-dose-engine"}


# --- 2. STRICT INPUT SCHEMA ---
class PatientRequest(BaseModel):
    weight_kg: float = Field(..., ge=0.3, le=250.0, description="Weight in kg")
    age: float = Field(..., ge=0, le=1440, description="Age, in age_unit")
    age_unit: AgeUnit = Field(default=AgeUnit.YEARS)
    route: Route = Field(default=Route.IM)

    class Config:
        json_schema_extra = {
            "example": {"weight_kg": 20.0, "age": 5, "age_unit": "years", "route": "IM"}
        }

    def to_context(self) -> PatientContext:
        return PatientContext(weight_kg=self.weight_kg, age=self.age, age_unit=self.age_unit, route=self.route)


class SessionRequest(BaseModel):
    patient: PatientRequest
    drug_ids: List[str] = Field(default_factory=list, description="Selection, in the order it was made")
    presentations: Dict[str, str] = Field(default_factory=dict, description="drug id -> presentation name")
    conditions: List[str] = Field(default_factory=list)
    symptoms: List[str] = Field(default_factory=list)
    adjuvant_active: bool = Field(False)
    adjuvant_option: AdjuvantOption = Field(default=AdjuvantOption.RECOMMENDED)

    class Config:
        json_schema_extra = {
            "example": {
                "patient": {"weight_kg": 70.0, "age": 40, "age_unit": "years", "route": "IM"},
                "drug_ids": ["metamizole", "dexamethasone"],
                "conditions": [], "symptoms": ["fever", "myalgia"],
                "adjuvant_active": True,
            }
        }


class ToggleRequest(BaseModel):
    session: SessionRequest
    drug_id: str


class DoseRequest(BaseModel):
    patient: PatientRequest
    presentation: Optional[str] = Field(None, description="Presentation name; principal when omitted")


class SymptomsRequest(BaseModel):
    symptoms: List[str] = Field(default_factory=list)


class PresetRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=80)
    session: SessionRequest


def build_session(request: SessionRequest) -> Session:
    """
    Replays the client's selection through the reducers, so gating holds even
    for a hand-crafted request. Rejected drugs are dropped.
    """
    catalog = get_catalog()
    preset = Preset(
        name="request",
        patient=request.patient.to_context(),
        drug_ids=tuple(request.drug_ids),
        presentations=dict(request.presentations),
        conditions=tuple(request.conditions),
    )
    session = preset.to_session(catalog)
    session = SelectionStateMachine.set_symptoms(session, request.symptoms).session
    return Session(
        patient=session.patient, selection=session.selection, conditions=session.conditions,
        symptoms=session.symptoms, adjuvant_active=request.adjuvant_active,
        adjuvant_option=request.adjuvant_option,
    )


def _require_drug(drug_id: str):
    drug = get_catalog().drug(drug_id)
    if drug is None:
        raise HTTPException(status_code=404, detail=f"Drug '{drug_id}' not found")
    return drug


# --- 3. CATALOG ENDPOINTS ---

@app.get("/drugs")
def list_drugs():
    return [
        {
            "id": d.id, "name": d.name, "class": d.drug_class,
            "routes": [r.value for r in d.routes],
            "presentations": [p.name for p in d.presentations],
            "structured": d.dose_rule is not None,
        }
        for d in get_catalog().drugs
    ]


@app.get("/conditions")
def list_conditions():
    return get_catalog().conditions


@app.get("/symptoms")
def list_symptoms():
    return SyndromeMatcher.symptom_catalog(get_catalog())


@app.get("/combinations")
def list_combinations():
    return get_catalog().combinations


# --- 4. ENGINE ENDPOINTS ---

@app.post("/evaluate")
def evaluate_session(request: SessionRequest):
    """Everything the clinician sees for this session, recomputed from scratch."""
    try:
        session = build_session(request)
        logger.info(f"Evaluating {len(session.selection.drug_ids)} drug(s) for "
                    f"{session.patient.weight_kg}kg, {session.patient.age_months:g}m")
        return DosiFlowEngine.evaluate(get_catalog(), session)

    except ValueError as e:
        logger.warning(f"Clinical Validation Error: {str(e)}")
        raise HTTPException(status_code=422, detail=f"Clinical Validation Error: {str(e)}")

    except Exception as e:
        logger.error(f"Internal Engine Failure: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal Dose Engine Error")


@app.post("/selection/toggle")
def toggle_drug(request: ToggleRequest):
    _require_drug(request.drug_id)
    try:
        session = build_session(request.session)
        transition = SelectionStateMachine.toggle(get_catalog(), session, request.drug_id)
        return {
            "accepted": transition.accepted,
            "alert": transition.alert,
            "removed": transition.removed,
            "drug_ids": list(transition.session.selection.drug_ids),
        }
    except ValueError as e:
        logger.warning(f"Clinical Validation Error: {str(e)}")
        raise HTTPException(status_code=422, detail=f"Clinical Validation Error: {str(e)}")


@app.get("/drugs/{drug_id}/status")
def drug_status(drug_id: str, weight_kg: float, age: float, age_unit: AgeUnit = AgeUnit.YEARS,
                route: Route = Route.IM, selected: str = "", conditions: str = ""):
    """Status against a comma-separated selection and condition list."""
    _require_drug(drug_id)
    try:
        request = SessionRequest(
            patient=PatientRequest(weight_kg=weight_kg, age=age, age_unit=age_unit, route=route),
            drug_ids=[d for d in selected.split(",") if d],
            conditions=[c for c in conditions.split(",") if c],
        )
        session = build_session(request)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=f"Clinical Validation Error: {str(e)}")
    return {"drug_id": drug_id, "status": SelectionStateMachine.drug_status(get_catalog(), session, drug_id)}


@app.post("/drugs/{drug_id}/dose")
def calculate_dose(drug_id: str, request: DoseRequest):
    drug = _require_drug(drug_id)
    presentation = None
    if request.presentation:
        presentation = next((p for p in drug.presentations if p.name == request.presentation), None)
        if presentation is None:
            raise HTTPException(status_code=422, detail=f"'{request.presentation}' is not a presentation of {drug.name}")
    try:
        return DoseCalculator.calculate(get_catalog(), drug_id, request.patient.to_context(), presentation)
    except ValueError as e:
        logger.warning(f"Clinical Validation Error: {str(e)}")
        raise HTTPException(status_code=422, detail=f"Clinical Validation Error: {str(e)}")


@app.post("/syndromes")
def match_syndromes(request: SymptomsRequest):
    catalog = get_catalog()
    epidemiological = SyndromeMatcher.epidemiological(catalog, request.symptoms)
    clinical = SyndromeMatcher.clinical(catalog, request.symptoms)
    return {
        "epidemiological": epidemiological,
        "clinical": clinical,
        "drug_panel": SyndromeMatcher.annotate_drug_panel(epidemiological, clinical),
    }


@app.get("/labels/{drug_id}")
def label_info(drug_id: str):
    """OpenFDA label summary. Never fails on network errors: see `error`."""
    _require_drug(drug_id)
    result = get_label_lookup().fetch_label_info(drug_id)
    return {
        "data": result.data.to_dict() if result.data else None,
        "error": result.error,
        "from_cache": result.from_cache,
    }


# --- 5. PRESETS ---

@app.get("/presets")
def list_presets():
    return [p.to_dict() if p else None for p in preset_store.list()]


@app.get("/presets/{slot}")
def load_preset(slot: int):
    try:
        preset = preset_store.load(slot)
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))
    if preset is None:
        raise HTTPException(status_code=404, detail=f"Preset slot {slot} is empty")
    return preset.to_dict()


@app.put("/presets/{slot}")
def save_preset(slot: int, request: PresetRequest):
    try:
        session = build_session(request.session)
        preset = preset_store.save(slot, Preset.from_session(request.name, session))
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=f"Clinical Validation Error: {str(e)}")
    return preset.to_dict()


@app.delete("/presets/{slot}")
def delete_preset(slot: int):
    try:
        preset_store.delete(slot)
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"deleted": slot}
