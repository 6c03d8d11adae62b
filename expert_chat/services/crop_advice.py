"""
Crop advice lookup over the static knowledge table.

Stage guidance is keyed by growth stage; issue guidance is a substring match
against each crop's known problems. Every answer that may lead a farmer to a
spray carries the protective-equipment reminder.
"""
from typing import Any, Dict, Mapping, Optional

STAGES = ("sowing", "vegetative", "flowering", "maturity")
STAGE_ALIASES = {"harvest": "maturity"}

SAFETY_REMINDER = (
    "Always wear protective equipment when handling pesticides. "
    "Follow recommended dosage. Dispose of empty containers safely."
)

PESTICIDE_KEYWORDS = (
    "pest", "spray", "pesticide", "insecticide", "fungicide", "herbicide", "chemical",
    "insect", "borer", "aphid", "whitefly", "worm", "disease", "rust", "blight",
)

GENERAL_TIPS = [
    "Use certified seeds from authorized dealers",
    "Get soil tested before applying fertilizers",
    "Follow integrated pest management (IPM) practices",
    "Maintain field hygiene by removing crop residues",
    "Consult local KVK for region-specific recommendations",
]


def _mentions_pesticides(text: Optional[str]) -> bool:
    text = (text or "").lower()
    return any(k in text for k in PESTICIDE_KEYWORDS)


def _match_issue(issues: Mapping[str, str], issue: str) -> Optional[Dict[str, str]]:
    issue_lower = issue.strip().lower()
    for problem, solution in issues.items():
        if issue_lower and (problem in issue_lower or issue_lower in problem):
            return {"problem": problem, "solution": solution}
    return None


def advise(knowledge: Mapping[str, Mapping[str, Any]], crop: str, stage: Optional[str] = None,
           issue: Optional[str] = None, location: Optional[str] = None) -> Dict[str, Any]:
    advice = knowledge.get(crop.strip().lower())

    if advice is None:
        out: Dict[str, Any] = {
            "crop": crop,
            "message": f"Specific database entry not available for {crop}. Here is general advice:",
            "general_tips": list(GENERAL_TIPS),
            "contact": "Visit your nearest Krishi Vigyan Kendra (KVK) for personalized guidance",
        }
        if issue and _mentions_pesticides(issue):
            out["safety_reminder"] = SAFETY_REMINDER
        return out

    out = {"crop": crop, "current_stage_advice": None}
    if stage:
        key = STAGE_ALIASES.get(stage.lower(), stage.lower())
        out["current_stage_advice"] = advice.get(key) if key in STAGES else None
        if out["current_stage_advice"] is None:
            out["current_stage_advice"] = "Stage not recognized. Provide: sowing, vegetative, flowering, or maturity."

    if issue:
        out["issue_advice"] = _match_issue(advice.get("common_issues", {}), issue) or {
            "message": f'Specific solution for "{issue}" not in database.',
            "recommendation": "Take photos and consult local agriculture officer or use crop health scanner in the app.",
        }

    if not stage and not issue:
        out["stage_wise_guide"] = {s: advice.get(s) for s in STAGES}

    if location:
        out["location_note"] = f"Timings are for typical conditions; confirm local sowing windows for {location} with your KVK."

    # every table entry recommends sprays somewhere in its guidance
    out["safety_reminder"] = SAFETY_REMINDER
    return out
