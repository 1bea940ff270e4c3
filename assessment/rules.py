"""
Static clinical rule tables.

All keys are lowercase and matched as substrings of the lowercased drug
name. These are screening tables, not a drug-interaction database.
"""

# Drug pairs that interact; order within a pair does not matter
INTERACTION_PAIRS = [
    ("warfarin", "aspirin"),
    ("metformin", "contrast"),
    ("digoxin", "furosemide"),
    ("lisinopril", "spironolactone"),
    ("sildenafil", "nitroglycerin"),
]

# Therapeutic class lookup
DRUG_CLASSES = {
    "metformin": "antidiabetic",
    "insulin": "antidiabetic",
    "lisinopril": "ace_inhibitor",
    "enalapril": "ace_inhibitor",
    "amlodipine": "calcium_channel_blocker",
    "nifedipine": "calcium_channel_blocker",
    "atorvastatin": "statin",
    "simvastatin": "statin",
}

OTHER_CLASS = "other"

# Drug -> patient conditions it is contraindicated with
CONDITION_CONTRAINDICATIONS = {
    "metformin": ["kidney disease", "renal failure"],
    "nsaid": ["kidney disease", "heart failure"],
    "ibuprofen": ["kidney disease", "heart failure"],
    "naproxen": ["kidney disease", "heart failure"],
    "diclofenac": ["kidney disease", "heart failure"],
    "beta-blocker": ["asthma", "copd"],
    "metoprolol": ["asthma", "copd"],
    "propranolol": ["asthma", "copd"],
    "atenolol": ["asthma", "copd"],
}

# Allergen -> drugs with known cross-sensitivity
CROSS_SENSITIVITIES = {
    "penicillin": ["amoxicillin", "ampicillin", "cephalexin"],
    "sulfa": ["sulfamethoxazole", "trimethoprim-sulfamethoxazole"],
    "aspirin": ["ibuprofen", "naproxen", "diclofenac"],
}

# Single-dose thresholds in the drug's usual unit (mg)
HIGH_DOSE_THRESHOLDS = {
    "metformin": 2000,
    "lisinopril": 40,
    "atorvastatin": 80,
}

LOW_DOSE_THRESHOLDS = {
    "metformin": 500,
    "lisinopril": 2.5,
    "atorvastatin": 10,
}


def is_interacting_pair(drug1: str, drug2: str) -> bool:
    """True if the two drug names match an interaction pair in either order."""
    a, b = drug1.lower(), drug2.lower()
    return any(
        (d1 in a and d2 in b) or (d2 in a and d1 in b)
        for d1, d2 in INTERACTION_PAIRS
    )


def get_drug_class(drug_name: str) -> str:
    """Therapeutic class for a drug, or 'other'."""
    name = drug_name.lower()
    for drug, drug_class in DRUG_CLASSES.items():
        if drug in name:
            return drug_class
    return OTHER_CLASS


def matches_allergy(drug_name: str, allergy: str) -> bool:
    """Direct allergy match or known cross-sensitivity."""
    name = drug_name.lower()
    allergen = allergy.strip().lower()
    if not allergen:
        return False
    if allergen in name:
        return True
    for key, cross_reactive in CROSS_SENSITIVITIES.items():
        if key in allergen and any(drug in name for drug in cross_reactive):
            return True
    return False


def contraindicated_conditions(drug_name: str, conditions: list[str]) -> list[str]:
    """Patient conditions the drug is contraindicated with."""
    name = drug_name.lower()
    for drug, bad_conditions in CONDITION_CONTRAINDICATIONS.items():
        if drug in name:
            return [
                condition
                for condition in conditions
                if any(c in condition.lower() for c in bad_conditions)
            ]
    return []


def _threshold(table: dict[str, float], drug_name: str) -> float | None:
    name = drug_name.lower()
    for drug, threshold in table.items():
        if drug in name:
            return threshold
    return None


def high_dose_threshold(drug_name: str) -> float | None:
    return _threshold(HIGH_DOSE_THRESHOLDS, drug_name)


def low_dose_threshold(drug_name: str) -> float | None:
    return _threshold(LOW_DOSE_THRESHOLDS, drug_name)
