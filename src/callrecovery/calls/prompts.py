"""
System prompt assembly for recovery calls.
"""

BASE_PREPROMPT = (
    "You are a helpful phone agent calling an e-commerce customer about an incomplete checkout. "
    "Your goal is to help them complete the purchase or answer questions. "
    "Keep it natural, calm, and professional."
)

CALL_RULES = (
    "- Be concise. One question at a time.",
    "- If customer says they already ordered, end politely.",
    "- Never mention internal tools or databases.",
)


def build_dynamic_prompt(
    base: str,
    merchant_prompt: str | None,
    shop: str,
    customer_name: str | None,
    cart_preview: str | None,
    currency: str,
    value: float,
) -> str:
    """Compose the per-call system prompt.

    Args:
        base: Generic agent instructions.
        merchant_prompt: Free-text instructions from the merchant, optional.
        shop: Store identifier shown to the agent.
        customer_name: Customer name, "unknown" when missing.
        cart_preview: Short cart summary, "unknown" when missing.
        currency: Currency code of the cart value.
        value: Cart value.

    Returns:
        Prompt sections joined by blank lines.
    """
    context = [
        "Context:",
        f"Store: {shop}",
        f"Customer name: {customer_name or 'unknown'}",
        f"Cart: {cart_preview or 'unknown'}",
        f"Cart value: {float(value or 0):.2f} {currency}",
        "",
        "Rules:",
        *CALL_RULES,
    ]
    parts = [base.strip(), "\n".join(context)]

    if merchant_prompt and merchant_prompt.strip():
        parts.append(f"Merchant instructions:\n{merchant_prompt.strip()}")

    return "\n\n".join(parts).strip()
