"""
Waste type classification.

KeywordWasteClassifier scores the photo filename against per-type keyword
lists. It stands in for an image model behind the same interface.
"""

import abc
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ecotrack.app.models.report_enums import WasteType


@dataclass(frozen=True)
class Classification:
    waste_type: WasteType
    confidence: float
    alternatives: List[Tuple[WasteType, float]] = field(default_factory=list)


WASTE_TYPE_KEYWORDS: Dict[WasteType, List[str]] = {
    WasteType.PLASTIC: [
        "bottle", "plastic", "bag", "container", "cup", "wrapper", "packaging",
        "straw", "utensil", "disposable", "polythene", "polymer",
    ],
    WasteType.PAPER: [
        "paper", "cardboard", "box", "newspaper", "magazine", "book", "document",
        "tissue", "napkin", "receipt", "envelope", "carton",
    ],
    WasteType.ORGANIC: [
        "food", "fruit", "vegetable", "organic", "compost", "kitchen", "peel",
        "leftover", "banana", "apple", "leaf", "garden", "bio",
    ],
    WasteType.METAL: [
        "can", "metal", "aluminum", "steel", "iron", "copper", "tin",
        "wire", "scrap", "foil", "bottle_cap",
    ],
    WasteType.GLASS: [
        "glass", "bottle", "jar", "window", "mirror", "bulb", "crystal",
        "wine", "beer", "transparent",
    ],
    WasteType.ELECTRONIC: [
        "phone", "computer", "laptop", "tablet", "tv", "monitor", "keyboard",
        "mouse", "cable", "battery", "charger", "electronic", "device",
        "circuit", "chip", "motherboard",
    ],
    WasteType.HAZARDOUS: [
        "battery", "chemical", "paint", "oil", "toxic", "dangerous", "hazardous",
        "medical", "syringe", "medicine", "cleaning", "solvent", "acid",
    ],
    WasteType.MIXED: [
        "mixed", "various", "multiple", "assorted", "different", "combination",
        "trash", "garbage", "rubbish",
    ],
}

NO_MATCH_CONFIDENCE = 0.3


class WasteClassifier(abc.ABC):

    @abc.abstractmethod
    def classify(self, filename: str, image_bytes: Optional[bytes] = None) -> Classification:
        ...


class KeywordWasteClassifier(WasteClassifier):
    """Filename keyword scoring; image bytes are accepted but unused."""

    def __init__(self, keywords: Optional[Dict[WasteType, List[str]]] = None):
        self.keywords = keywords or WASTE_TYPE_KEYWORDS

    def classify(self, filename: str, image_bytes: Optional[bytes] = None) -> Classification:
        name = (filename or "").lower()

        scores = []
        for waste_type, words in self.keywords.items():
            score = sum(1 for word in words if word in name)
            if score > 0:
                scores.append((waste_type, score))

        if not scores:
            return Classification(WasteType.OTHER, NO_MATCH_CONFIDENCE)

        # Stable sort keeps declaration order among equal scores
        scores.sort(key=lambda item: item[1], reverse=True)
        best_type, best_score = scores[0]
        confidence = min(0.95, 0.4 + (best_score / len(self.keywords[best_type])) * 0.5)

        alternatives = [
            (waste_type, round(max(0.1, confidence * 0.7 * (score / best_score)), 2))
            for waste_type, score in scores[1:4]
        ]
        return Classification(best_type, round(confidence, 2), alternatives)


def get_classifier() -> WasteClassifier:
    return KeywordWasteClassifier()
