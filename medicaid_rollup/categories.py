"""Coarse HCPCS/CPT category mapping."""

OTHER = "Other"

# HCPCS Level II codes, keyed by leading letter
LETTER_CATEGORIES = {
    "A": "Transport & DME",
    "B": "Enteral/Parenteral",
    "C": "Outpatient Hospital",
    "D": "Dental",
    "E": "DME",
    "G": "Procedures/Services",
    "H": "Behavioral Health",
    "J": "Drugs",
    "K": "DME",
    "L": "Orthotics/Prosthetics",
    "M": "Quality Measures",
    "P": "Pathology/Lab",
    "Q": "Temporary Codes",
    "R": "Radiology",
    "S": "Private Payer",
    "T": "State Medicaid",
    "V": "Vision/Hearing",
}

# CPT numeric ranges, checked in order (inclusive bounds)
NUMERIC_CATEGORIES = [
    (99201, 99499, "E&M"),
    (10000, 69999, "Surgery"),
    (70000, 79999, "Radiology"),
    (80000, 89999, "Pathology/Lab"),
    (90000, 99199, "Medicine"),
    (0, 9999, "E&M"),
]


def hcpcs_category(code: str) -> str:
    """Map a procedure code to its category label. Total and deterministic."""
    if not code:
        return OTHER
    first = code[0]
    if "A" <= first <= "V":
        return LETTER_CATEGORIES.get(first, "Other Level II")
    # Leading digits of the first five characters, so "0001F" reads as 1
    digits = ""
    for ch in code[:5]:
        if not ch.isdigit():
            break
        digits += ch
    if not digits:
        return OTHER
    num = int(digits)
    for low, high, label in NUMERIC_CATEGORIES:
        if low <= num <= high:
            return label
    return OTHER
