"""
Response post-processing.

Turns the assistant's raw text into the reply the transport delivers:
handover detection and best-effort product image selection.
"""

import logging
import re
from typing import List, Optional, Sequence, Tuple

from aigateway.business import DeviceContext, ProductItem
from aigateway.config import ScoringWeights
from aigateway.prompts import HANDOVER_SENTINEL
from aigateway.schemas import GatewayResponse

logger = logging.getLogger(__name__)

# Price and picture requests in Indonesian, English and Malay
INTENT_KEYWORDS = frozenset({
    "harga", "berapa", "biaya", "foto", "gambar", "lihat", "tunjuk",
    "price", "cost", "much", "photo", "picture", "image", "pic", "show",
    "gamba", "rupa",
})

_WORD = re.compile(r"\w+", re.UNICODE)
_SENTINEL = re.compile(re.escape(HANDOVER_SENTINEL), re.IGNORECASE)


def _words(text: str) -> List[str]:
    return _WORD.findall(text.lower())


class ResponsePostProcessor:
    """Handover detection and product-mention scoring."""

    def __init__(self, weights: Optional[ScoringWeights] = None):
        self.weights = weights or ScoringWeights()

    def detect_handover(
        self,
        raw: str,
        inbound_text: str,
        triggers: Sequence[str],
    ) -> Tuple[str, bool]:
        """
        Strip the handover sentinel and decide whether a human should take over.

        Returns:
            (visible text, needs_handover)
        """
        flagged = bool(_SENTINEL.search(raw))
        visible = _SENTINEL.sub("", raw).strip()

        lowered = inbound_text.lower()
        requested = any(t.lower() in lowered for t in triggers if t and t.strip())
        return visible, flagged or requested

    def score_item(self, item: ProductItem, reply: str, inbound_text: str, has_intent: bool) -> float:
        """
        Score one item. Name words and intent keywords match as substrings of
        the inbound text, so suffixed forms like "harganya" still count.
        """
        w = self.weights
        score = 0.0
        if item.name.strip().lower() in reply.lower():
            score += w.exact_mention

        inbound = inbound_text.lower()
        name_words = [x for x in _words(item.name) if len(x) >= w.min_word_length]
        matched = sum(1 for x in name_words if x in inbound)
        if name_words:
            score += w.word_overlap * matched / len(name_words)
        if has_intent and matched:
            score += w.intent_bonus
        return score

    def select_image(self, items: Sequence[ProductItem], reply: str, inbound_text: str) -> Optional[ProductItem]:
        """Highest-scoring item at or above the threshold. Ties keep the first."""
        inbound = inbound_text.lower()
        has_intent = any(keyword in inbound for keyword in INTENT_KEYWORDS)

        best, best_score = None, 0.0
        for item in items:
            score = self.score_item(item, reply, inbound_text, has_intent)
            logger.debug("Product score %s: %.1f", item.name, score)
            if score >= self.weights.threshold and score > best_score:
                best, best_score = item, score
        return best

    def post_process(self, raw: str, inbound_text: str, ctx: DeviceContext) -> GatewayResponse:
        content, needs_handover = self.detect_handover(
            raw, inbound_text, ctx.business.handover_triggers
        )
        item = self.select_image(ctx.business.image_candidates(), content, inbound_text)
        if needs_handover:
            logger.info("Handover requested on %s/%s", ctx.device_id, ctx.chat_id)
        return GatewayResponse(
            content=content,
            image_id=item.image_ref if item else None,
            needs_handover=needs_handover,
        )
