"""
Regional (Vietnam) query classification.

Pure and deterministic: keyword hits and diacritic density feed a capped
confidence score. The score is only used to pick a search strategy and a cache
TTL; nothing here performs I/O or raises.
"""
from __future__ import annotations

import logging
import re
import unicodedata
from typing import Dict, List, Optional, Tuple

from domain.models import DetectionResult
from settings import settings

logger = logging.getLogger(__name__)

HINT_CONFIDENCE = 0.95
KEYWORD_WEIGHT = 0.75
KEYWORD_CAP = 0.9
DIACRITIC_WEIGHT = 0.75
DIACRITIC_CAP = 0.25
TONE_FAMILY_WEIGHT = 0.05
TONE_FAMILY_CAP = 0.1

REGIONAL_KEYWORDS: Tuple[str, ...] = (
    # Country
    "vietnam", "việt nam", "viet nam",
    # Major cities and destinations
    "saigon", "sài gòn", "ho chi minh", "hồ chí minh", "hcm", "tphcm",
    "hanoi", "hà nội", "ha noi",
    "da nang", "đà nẵng", "danang",
    "hue", "huế",
    "can tho", "cần thơ",
    "hai phong", "hải phòng",
    "bien hoa", "biên hòa",
    "nha trang",
    "vung tau", "vũng tàu",
    "da lat", "đà lạt", "dalat",
    "quy nhon", "quy nhơn",
    "buon ma thuot", "buôn ma thuột",
    "phan thiet", "phan thiết",
    "ha long", "hạ long", "halong",
    "sapa", "sa pa",
    "mui ne", "mũi né",
    "phu quoc", "phú quốc",
    "con dao", "côn đảo",
    "hoi an", "hội an",
    "mekong", "mê kông",
    # Provinces
    "ha giang", "hà giang", "cao bang", "cao bằng", "lao cai", "lào cai",
    "quang ninh", "quảng ninh", "ninh binh", "ninh bình", "bac ninh", "bắc ninh",
    "thanh hoa", "thanh hóa", "nghe an", "nghệ an", "quang binh", "quảng bình",
    "quang nam", "quảng nam", "khanh hoa", "khánh hòa", "lam dong", "lâm đồng",
    "dak lak", "đắk lắk", "gia lai", "kon tum",
    "binh duong", "bình dương", "dong nai", "đồng nai", "tay ninh", "tây ninh",
    "ben tre", "bến tre", "an giang", "kien giang", "kiên giang",
    "ca mau", "cà mau", "soc trang", "sóc trăng", "bac lieu", "bạc liêu",
)

# Checked in order; the first region with a hit wins.
REGION_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "north": (
        "hanoi", "hà nội", "ha noi", "ha long", "hạ long", "halong", "sapa", "sa pa",
        "hai phong", "hải phòng", "ha giang", "hà giang", "cao bang", "cao bằng",
        "lao cai", "lào cai", "quang ninh", "quảng ninh", "ninh binh", "ninh bình",
        "bac ninh", "bắc ninh",
    ),
    "central": (
        "hue", "huế", "da nang", "đà nẵng", "danang", "hoi an", "hội an",
        "thanh hoa", "thanh hóa", "nghe an", "nghệ an", "quang binh", "quảng bình",
        "quang nam", "quảng nam", "khanh hoa", "khánh hòa", "nha trang",
        "quy nhon", "quy nhơn", "lam dong", "lâm đồng", "da lat", "đà lạt", "dalat",
        "dak lak", "đắk lắk", "buon ma thuot", "buôn ma thuột", "gia lai", "kon tum",
    ),
    "south": (
        "ho chi minh", "hồ chí minh", "hcm", "tphcm", "saigon", "sài gòn",
        "can tho", "cần thơ", "bien hoa", "biên hòa", "vung tau", "vũng tàu",
        "binh duong", "bình dương", "dong nai", "đồng nai", "tay ninh", "tây ninh",
        "ben tre", "bến tre", "an giang", "kien giang", "kiên giang", "ca mau", "cà mau",
        "soc trang", "sóc trăng", "bac lieu", "bạc liêu", "phu quoc", "phú quốc",
        "con dao", "côn đảo", "mekong", "mê kông", "phan thiet", "phan thiết",
        "mui ne", "mũi né",
    ),
}

VIETNAMESE_CHARS = re.compile(
    "[àáảãạăắằẳẵặâấầẩẫậèéẻẽẹêếềểễệìíỉĩịòóỏõọôốồổỗộơớờởỡợùúủũụưứừửữựỳýỷỹỵđ]",
    re.IGNORECASE,
)

TONE_FAMILIES: Tuple[re.Pattern, ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        "[àáảãạ]", "[ăắằẳẵặ]", "[âấầẩẫậ]", "[èéẻẽẹ]", "[êếềểễệ]", "[ìíỉĩị]",
        "[òóỏõọ]", "[ôốồổỗộ]", "[ơớờởỡợ]", "[ùúủũụ]", "[ưứừửữự]", "[ỳýỷỹỵ]", "đ",
    )
)

# Approximate national bounding box
TARGET_BOUNDS = {
    "north": 23.393395,
    "south": 8.179769,
    "east": 109.464638,
    "west": 102.144003,
}

PROVINCE_MARKERS = ("tỉnh", "thành phố", "tp.", "tp ")
DISTRICT_MARKERS = ("quận", "huyện", "thị xã", "q.", "h.")
WARD_MARKERS = ("phường", "xã", "thị trấn", "p.", "x.", "tt.")


def _keyword_pattern(keyword: str) -> re.Pattern:
    return re.compile(r"(?<!\w)" + re.escape(keyword) + r"(?!\w)")


_KEYWORD_PATTERNS: List[Tuple[str, re.Pattern]] = [(k, _keyword_pattern(k)) for k in REGIONAL_KEYWORDS]
_REGION_PATTERNS: List[Tuple[str, List[re.Pattern]]] = [
    (region, [_keyword_pattern(k) for k in keywords]) for region, keywords in REGION_KEYWORDS.items()
]


def strip_diacritics(text: str) -> str:
    """Lower-case and remove accents so 'Hà Nội' compares equal to 'ha noi'."""
    if not text:
        return ""
    text = text.replace("đ", "d").replace("Đ", "D")
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn").lower()


def is_in_target_bounds(lat: float, lng: float) -> bool:
    return (
        TARGET_BOUNDS["south"] <= lat <= TARGET_BOUNDS["north"]
        and TARGET_BOUNDS["west"] <= lng <= TARGET_BOUNDS["east"]
    )


def region_from_coordinates(lat: float, lng: float) -> Optional[str]:
    """North above Thanh Hoa, central down to Nha Trang, south below."""
    if not is_in_target_bounds(lat, lng):
        return None
    if lat >= 19:
        return "north"
    if lat >= 14:
        return "central"
    return "south"


def detect_sub_region(lower_query: str) -> Optional[str]:
    for region, patterns in _REGION_PATTERNS:
        if any(p.search(lower_query) for p in patterns):
            return region
    return None


def extract_administrative(address: Optional[str]) -> Dict[str, str]:
    """Tag province / district / ward parts of a Vietnamese address string."""
    if not address:
        return {}
    result: Dict[str, str] = {}
    for part in (p.strip() for p in re.split(r"[,;-]", address)):
        if not part:
            continue
        lower = part.lower() + " "
        if "province" not in result and any(m in lower for m in PROVINCE_MARKERS):
            result["province"] = part
        elif "district" not in result and any(m in lower for m in DISTRICT_MARKERS):
            result["district"] = part
        elif "ward" not in result and any(m in lower for m in WARD_MARKERS):
            result["ward"] = part
    return result


class RegionDetector:
    def __init__(self, target_country: Optional[str] = None):
        self.target_country = (target_country or settings.TARGET_COUNTRY_CODE).upper()

    def detect(self, query: str, user_country: Optional[str] = None) -> DetectionResult:
        reasoning: List[str] = []
        lower_query = (query or "").strip().lower()
        keywords = self._matched_keywords(lower_query)
        region = detect_sub_region(lower_query) if lower_query else None

        if user_country and user_country.strip().upper() == self.target_country:
            reasoning.append(f"user country hint matches {self.target_country}")
            if region:
                reasoning.append(f"sub-region keyword points to {region}")
            return DetectionResult(
                is_regional=True,
                confidence=HINT_CONFIDENCE,
                detected_keywords=keywords,
                region=region,
                reasoning=reasoning,
            )

        if not lower_query:
            reasoning.append("empty query, no regional signal")
            return DetectionResult(is_regional=False, confidence=0.0, reasoning=reasoning)

        confidence = 0.0
        signal = False

        if keywords:
            signal = True
            score = min(len(keywords) * KEYWORD_WEIGHT, KEYWORD_CAP)
            confidence += score
            reasoning.append(f"matched keywords {keywords} (+{score:.2f})")

        letters = [ch for ch in lower_query if ch.isalpha()]
        diacritics = VIETNAMESE_CHARS.findall(lower_query)
        if diacritics and letters:
            signal = True
            ratio = len(diacritics) / len(letters)
            score = min(ratio * DIACRITIC_WEIGHT, DIACRITIC_CAP)
            confidence += score
            reasoning.append(f"vietnamese diacritic density {ratio:.2f} (+{score:.2f})")

            families = sum(1 for p in TONE_FAMILIES if p.search(lower_query))
            score = min(families * TONE_FAMILY_WEIGHT, TONE_FAMILY_CAP)
            confidence += score
            reasoning.append(f"{families} tone families present (+{score:.2f})")

        confidence = min(confidence, 1.0)
        if region:
            reasoning.append(f"sub-region keyword points to {region}")
        if not signal:
            reasoning.append("no regional keywords or diacritics")

        logger.debug("Region detection for %r: regional=%s confidence=%.2f", query, signal, confidence)
        return DetectionResult(
            is_regional=signal,
            confidence=round(confidence, 4),
            detected_keywords=keywords,
            region=region,
            reasoning=reasoning,
        )

    @staticmethod
    def _matched_keywords(lower_query: str) -> List[str]:
        if not lower_query:
            return []
        return [k for k, pattern in _KEYWORD_PATTERNS if pattern.search(lower_query)]
