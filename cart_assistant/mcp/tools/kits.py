"""Specialty kits: named bundles of catalog specialties per class."""

AVAILABLE_MODELS = ["Standard", "Neutral", "Detailed", "Retro"]

FRIEND_CLASS = [
    "Beginner Swimming I",
    "Physical Fitness",
    "Knot Tying",
    "Basic Water Safety",
    "Cats",
    "Dogs",
    "Mammals",
    "Seeds",
    "Pet Birds",
    "Camping Skills",
]

COMPANION_CLASS = [
    "Beginner Swimming II",
    "Camping Skills II",
    "Amphibians",
    "Birds",
    "Poultry",
    "Livestock",
    "Reptiles",
    "Mollusks",
    "Trees",
    "Shrubs",
    "Backpacking",
]

EXPLORER_CLASS = [
    "Astronomy",
    "Cacti",
    "Climatology",
    "Flowers",
    "Animal Tracking",
    "Camping Skills III",
    "First Aid - Basic",
    "Christian Grooming and Manners",
    "Family Life",
]

PIONEER_CLASS = [
    "Basic Rescue",
    "Christian Citizenship",
    "Map and Compass",
    "Fire Building and Camp Cookery",
]

EXCURSIONIST_CLASS = [
    "Temperance",
    "Adventures for Christ",
    "Pioneering",
    "Youth Witness",
    "Wildlife",
    "Drilling and Marching",
]

GUIDE_CLASS = [
    "Nutrition",
    "Physical Fitness",
    "Ecology",
    "Environmental Conservation",
    "Stewardship",
    "Outdoor Living",
    "Family Budgeting",
    "Outdoor Leadership",
]


def _all_classes():
    seen = []
    for items in (FRIEND_CLASS, COMPANION_CLASS, EXPLORER_CLASS, PIONEER_CLASS,
                  EXCURSIONIST_CLASS, GUIDE_CLASS):
        for item in items:
            if item not in seen:
                seen.append(item)
    return seen


KITS = {
    "complete_kit_all_classes": {
        "name": "Complete Kit - All Classes",
        "description": "Every required specialty for all six classes",
        "items": _all_classes(),
    },
    "friend_class": {
        "name": "Friend Class",
        "description": "Required specialties for the Friend class",
        "items": FRIEND_CLASS,
    },
    "companion_class": {
        "name": "Companion Class",
        "description": "Required specialties for the Companion class",
        "items": COMPANION_CLASS,
    },
    "explorer_class": {
        "name": "Explorer Class",
        "description": "Required specialties for the Explorer class",
        "items": EXPLORER_CLASS,
    },
    "pioneer_class": {
        "name": "Pioneer Class",
        "description": "Required specialties for the Pioneer class",
        "items": PIONEER_CLASS,
    },
    "excursionist_class": {
        "name": "Excursionist Class",
        "description": "Required specialties for the Excursionist class",
        "items": EXCURSIONIST_CLASS,
    },
    "guide_class": {
        "name": "Guide Class",
        "description": "Required specialties for the Guide class",
        "items": GUIDE_CLASS,
    },
}


def find_kit(kit_name: str):
    """(kit_id, kit) for an id like ``friend_class`` / ``friend-class`` or a display name."""
    kit_key = kit_name.strip().lower().replace(" ", "_").replace("-", "_")
    for kit_id, kit in KITS.items():
        if kit_id == kit_key or kit["name"].lower() == kit_name.strip().lower():
            return kit_id, kit
    return None, None
