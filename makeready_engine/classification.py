"""Wire category classification from a keyword table (data/wire_keywords.json)."""

import json
import logging
import re
from pathlib import Path
from typing import Dict, List, Optional

from .models import CATEGORIES, CATEGORY_OTHER

logger = logging.getLogger(__name__)

_DEFAULT_PATH = Path(__file__).parent / "data" / "wire_keywords.json"


class WireClassifier:
    """
    Classify a wire annotation as communication, electrical or other.

    Resolution order:
    1. wire-type keywords, category by category
    2. owner-name keywords, category by category
    3. default category
    """

    def __init__(self, keywords_path: Optional[Path] = None, table: Optional[dict] = None):
        if table is None:
            path = Path(keywords_path) if keywords_path else _DEFAULT_PATH
            with open(path, encoding="utf-8") as f:
                table = json.load(f)
        self._load(table)

    def _load(self, table: dict):
        self.category_order: List[str] = list(table.get("category_order", []))
        self.default_category: str = table.get("default_category", CATEGORY_OTHER)
        self.type_keywords = self._keyword_section(table.get("type_keywords", {}))
        self.owner_keywords = self._keyword_section(table.get("owner_keywords", {}))
        for category in list(self.type_keywords) + list(self.owner_keywords):
            if category not in self.category_order:
                self.category_order.append(category)
        logger.info(
            f"Wire keywords: {sum(len(v) for v in self.type_keywords.values())} type, "
            f"{sum(len(v) for v in self.owner_keywords.values())} owner keywords loaded"
        )

    @staticmethod
    def _keyword_section(section: dict) -> Dict[str, List[str]]:
        out = {}
        for category, words in section.items():
            if category not in CATEGORIES:
                logger.warning(f"Wire keywords: unknown category '{category}' ignored")
                continue
            out[category] = [w.lower() for w in words if w]
        return out

    @staticmethod
    def _first_hit(text: str, table: Dict[str, List[str]], order: List[str],
                   whole_words: bool = False) -> Optional[str]:
        if not text:
            return None
        for category in order:
            for word in table.get(category, ()):
                if whole_words:
                    # "att" must not hit "Seattle"
                    if re.search(rf"(?<![a-z0-9]){re.escape(word)}(?![a-z0-9])", text):
                        return category
                elif word in text:
                    return category
        return None

    def classify(self, owner: str = "", wire_type: str = "") -> str:
        """Wire-type keywords match anywhere; owner keywords match whole words only."""
        wire_type = (wire_type or "").lower()
        owner = (owner or "").lower()
        return (
            self._first_hit(wire_type, self.type_keywords, self.category_order)
            or self._first_hit(owner, self.owner_keywords, self.category_order, whole_words=True)
            or self.default_category
        )
