"""Coding systems and fixed codes shared by the FHIR mappers."""

# Terminologies
SYSTEM_SNOMED = "http://snomed.info/sct"
SYSTEM_LOINC = "http://loinc.org"
SYSTEM_RXNORM = "http://www.nlm.nih.gov/research/umls/rxnorm"
SYSTEM_CVX = "http://hl7.org/fhir/sid/cvx"
SYSTEM_NPI = "http://hl7.org/fhir/sid/us-npi"
SYSTEM_UCUM = "http://unitsofmeasure.org"

# HL7 code systems
SYSTEM_ACT_CODE = "http://terminology.hl7.org/CodeSystem/v3-ActCode"
SYSTEM_PARTICIPATION_TYPE = "http://terminology.hl7.org/CodeSystem/v3-ParticipationType"
SYSTEM_DIAGNOSIS_ROLE = "http://terminology.hl7.org/CodeSystem/diagnosis-role"
SYSTEM_DATA_OPERATION = "http://terminology.hl7.org/CodeSystem/v3-DataOperation"
SYSTEM_CONDITION_CLINICAL = "http://terminology.hl7.org/CodeSystem/condition-clinical"
SYSTEM_CONDITION_VERIFICATION = "http://terminology.hl7.org/CodeSystem/condition-ver-status"
SYSTEM_CONDITION_CATEGORY = "http://terminology.hl7.org/CodeSystem/condition-category"
SYSTEM_OBSERVATION_CATEGORY = "http://terminology.hl7.org/CodeSystem/observation-category"
SYSTEM_DIAGNOSTIC_SERVICE = "http://terminology.hl7.org/CodeSystem/v2-0074"
SYSTEM_ALLERGY_CLINICAL = "http://terminology.hl7.org/CodeSystem/allergyintolerance-clinical"
SYSTEM_ALLERGY_VERIFICATION = "http://terminology.hl7.org/CodeSystem/allergyintolerance-verification"
SYSTEM_GOAL_ACHIEVEMENT = "http://terminology.hl7.org/CodeSystem/goal-achievement"
SYSTEM_PROVENANCE_AGENT_TYPE = "http://terminology.hl7.org/CodeSystem/provenance-participant-type"

# Encounter class (v3-ActCode)
DEFAULT_ENCOUNTER_CLASS = "AMB"
ENCOUNTER_CLASS_DISPLAY = {
    "AMB": "ambulatory",
    "EMER": "emergency",
    "FLD": "field",
    "HH": "home health",
    "IMP": "inpatient encounter",
    "ACUTE": "inpatient acute",
    "NONAC": "inpatient non-acute",
    "OBSENC": "observation encounter",
    "PRENC": "pre-admission",
    "SS": "short stay",
    "VR": "virtual",
}
DEFAULT_ENCOUNTER_STATUS = "finished"
ENCOUNTER_STATUSES = frozenset(
    {
        "planned",
        "arrived",
        "triaged",
        "in-progress",
        "onleave",
        "finished",
        "cancelled",
        "entered-in-error",
        "unknown",
    }
)

# Encounter diagnosis roles
DIAGNOSIS_ROLE_ADMISSION = ("AD", "Admission diagnosis")
DIAGNOSIS_ROLE_DISCHARGE = ("DD", "Discharge diagnosis")

# Encounter participant type for the attending provider
PARTICIPANT_ATTENDER = ("ATND", "attender")

# Category defaults used when an external resource carries none
DEFAULT_CONDITION_CATEGORY = "problem-list-item"
DEFAULT_DIAGNOSTIC_REPORT_CATEGORY = "LAB"
IMAGING_REPORT_CATEGORIES = ("RAD", "IMG", "imaging")

# LOINC document types treated as clinical notes
CLINICAL_NOTE_TYPES = ("11506-3", "34133-9", "18842-5", "28570-0", "11488-4")
DISCHARGE_SUMMARY_TYPE = "18842-5"

# Vital sign LOINC codes used for self-reported measurements
LOINC_BP_PANEL = ("85354-9", "Blood pressure panel with all children optional")
LOINC_SYSTOLIC = ("8480-6", "Systolic blood pressure")
LOINC_DIASTOLIC = ("8462-4", "Diastolic blood pressure")
LOINC_HEART_RATE = ("8867-4", "Heart rate")
LOINC_SPO2 = ("2708-6", "Oxygen saturation in Arterial blood")
LOINC_GLUCOSE = ("2339-0", "Glucose [Mass/volume] in Blood")
LOINC_BODY_WEIGHT = ("29463-7", "Body weight")
