"""
System prompt rendering.

The prompt is built from clauses in a fixed order. A clause is emitted
only when the business context has data for it, so the same context
always renders the same prompt.
"""

from typing import Callable, List, Optional

from aigateway.business import BrandVoice, BusinessContext, DeviceContext, PrimaryGoal, ProductItem
from aigateway.config import DEFAULT_RULES

HANDOVER_SENTINEL = "[HANDOVER]"

VOICE_STYLES = {
    BrandVoice.CASUAL: "Speak in a warm, relaxed and friendly tone, like a helpful friend.",
    BrandVoice.FORMAL: "Speak politely and professionally, using formal address.",
    BrandVoice.EXPERT: "Speak as a knowledgeable specialist: precise, confident and informative.",
    BrandVoice.LUXURY: "Speak with refined elegance, emphasizing exclusivity and premium quality.",
}

GOALS = {
    PrimaryGoal.CONVERSION: (
        "Your primary goal is to CONVERT conversations into sales while giving "
        "an excellent customer experience."
    ),
    PrimaryGoal.LEADS: (
        "Your primary goal is to capture qualified leads: learn what the customer "
        "needs and collect their contact details for follow-up."
    ),
    PrimaryGoal.SUPPORT: (
        "Your primary goal is to resolve customer questions and problems quickly and accurately."
    ),
}

LANGUAGES = {
    "id": "Respond primarily in Bahasa Indonesia unless the customer uses English.",
    "en": "Respond primarily in English unless the customer uses another language.",
    "ms": "Respond primarily in Bahasa Melayu unless the customer uses another language.",
}

REFUSALS = {
    "id": "Maaf, saya hanya dapat membantu pertanyaan seputar produk dan layanan kami.",
    "en": "Sorry, I can only help with questions about our products and services.",
    "ms": "Maaf, saya hanya boleh membantu soalan berkaitan produk dan perkhidmatan kami.",
}

MEMORY_ON = (
    "You have access to the conversation history of this chat. Use it to give relevant, "
    "personal answers without mentioning that you are reading past messages."
)
MEMORY_OFF = "You only see the current message, without previous conversation history."


def _memory(ctx: DeviceContext) -> str:
    return MEMORY_ON if ctx.memory_enabled else MEMORY_OFF


def _persona(ctx: DeviceContext, is_group: bool) -> Optional[str]:
    business = ctx.business
    if business.custom_prompt and business.custom_prompt.strip():
        return f"{business.custom_prompt.strip()} {_memory(ctx)}"
    chat_kind = "group" if is_group else "private"
    return (
        f"You are {business.bot_name or 'Assistant'}, a WhatsApp {chat_kind} chat assistant "
        f"for this business. {VOICE_STYLES[business.brand_voice]} {_memory(ctx)}"
    )


def _goal(ctx: DeviceContext, is_group: bool) -> Optional[str]:
    return GOALS[ctx.business.primary_goal]


def _language(ctx: DeviceContext, is_group: bool) -> Optional[str]:
    code = ctx.business.language
    return LANGUAGES.get(code, f"Respond primarily in the language with code '{code}'.")


def _format_items(items: List[ProductItem]) -> List[str]:
    lines = []
    for index, item in enumerate(items, start=1):
        line = f"{index}. {item.name or 'Unnamed'}"
        if item.price:
            line += f" - {item.price}"
        if item.description:
            line += f"\n   {item.description}"
        if item.promo:
            line += f"\n   Promo: {item.promo}"
        if item.image_ref:
            line += "\n   Image available"
        lines.append(line)
    return lines


def _product_knowledge(ctx: DeviceContext, is_group: bool) -> Optional[str]:
    knowledge = ctx.business.product_knowledge
    parts = []
    if knowledge.items:
        parts.append("PRODUCTS/SERVICES:\n" + "\n".join(_format_items(knowledge.items)))
    if knowledge.other_description.strip():
        parts.append(knowledge.other_description.strip())
    if not parts:
        return None
    return (
        "PRODUCT KNOWLEDGE:\n" + "\n\n".join(parts)
        + "\nUse this product information to answer customer questions accurately."
    )


def _product_catalog(ctx: DeviceContext, is_group: bool) -> Optional[str]:
    items = ctx.business.product_catalog.items
    if not items:
        return None
    return "PRODUCT CATALOG:\n" + "\n".join(_format_items(items))


def _faq(ctx: DeviceContext, is_group: bool) -> Optional[str]:
    items = ctx.business.faq.items
    if not items:
        return None
    lines = [f"Q: {item.question}\nA: {item.answer}" for item in items]
    return "FREQUENTLY ASKED QUESTIONS:\n" + "\n".join(lines)


def _business_profile(ctx: DeviceContext, is_group: bool) -> Optional[str]:
    business = ctx.business
    lines = []
    if business.business_type:
        lines.append(f"Business type: {business.business_type}")
    if business.upsell_strategies:
        lines.append(f"Upsell strategies: {business.upsell_strategies}")
    if business.objection_handling:
        lines.append(f"Objection handling: {business.objection_handling}")
    if not lines:
        return None
    return "BUSINESS PROFILE:\n" + "\n".join(lines)


def _boundaries(ctx: DeviceContext, is_group: bool) -> Optional[str]:
    business = ctx.business
    if not business.boundaries_enabled:
        return None
    refusal = refusal_for(business)
    return (
        "BOUNDARIES: Only discuss this business, its products and its services. "
        "If the customer asks about anything unrelated, politely decline with: "
        f'"{refusal}"'
    )


def _handover(ctx: DeviceContext, is_group: bool) -> Optional[str]:
    triggers = ctx.business.handover_triggers
    examples = f" (for example: {', '.join(triggers)})" if triggers else ""
    return (
        f"HANDOVER: If the customer asks to talk to a human{examples}, or you cannot "
        f"help them, reply briefly and end your message with {HANDOVER_SENTINEL}."
    )


def _sales_scripts(ctx: DeviceContext, is_group: bool) -> Optional[str]:
    scripts = ctx.business.sales_scripts
    parts = []
    if scripts.items:
        lines = [
            f"{index}. {item.name}\n   {item.response}"
            for index, item in enumerate(scripts.items, start=1)
        ]
        parts.append("\n".join(lines))
    if scripts.detailed_response.strip():
        parts.append(scripts.detailed_response.strip())
    if not parts:
        return None
    return (
        "SALES SCRIPTS & PROCEDURES:\n" + "\n\n".join(parts)
        + "\nFollow these scripts and procedures for consistent customer service."
    )


def _rules(ctx: DeviceContext, is_group: bool) -> Optional[str]:
    rules = ctx.business.rules
    title = "IMPORTANT RULES:" if rules else "GUIDELINES:"
    numbered = [f"{index}. {rule}" for index, rule in enumerate(rules or DEFAULT_RULES, start=1)]
    return title + "\n" + "\n".join(numbered)


CLAUSES: List[Callable[[DeviceContext, bool], Optional[str]]] = [
    _persona,
    _goal,
    _language,
    _product_knowledge,
    _product_catalog,
    _faq,
    _business_profile,
    _boundaries,
    _handover,
    _sales_scripts,
    _rules,
]


def render_system_prompt(ctx: DeviceContext, is_group: bool = False) -> str:
    """Render the system prompt for a device context."""
    clauses = (clause(ctx, is_group) for clause in CLAUSES)
    return "\n\n".join(c for c in clauses if c)


def refusal_for(business: BusinessContext) -> str:
    return REFUSALS.get(business.language, REFUSALS["en"])
