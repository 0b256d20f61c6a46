"""Builds provider request pieces from a ConversationContext."""

from typing import List

from app.schemas.context import ConversationContext, PackageSummary
from app.services.data_loader import load_data_table
from app.services.language_service import Language


def _prompt_table() -> dict:
    return load_data_table("prompts")


def language_instruction(language) -> str:
    instructions = _prompt_table().get("language_instructions") or {}
    code = language.value if isinstance(language, Language) else language
    if code == Language.ENGLISH.value:
        return instructions.get("english", "Respond in English.")
    return instructions.get("default", "")


def _format_price(price: float) -> str:
    return str(int(price)) if float(price).is_integer() else f"{price:.2f}"


def format_package_list(packages: List[PackageSummary]) -> str:
    if not packages:
        return ""
    limit = int(_prompt_table().get("package_feature_limit", 3))
    lines = [f"- {p.name}: Rs. {_format_price(p.price)} ({', '.join(p.features[:limit])})" for p in packages]
    return "Available Packages:\n" + "\n".join(lines)


def format_guidelines() -> str:
    guidelines = _prompt_table().get("guidelines") or {}
    rules = [f"- Keep responses under {guidelines.get('max_words', 200)} words"]
    rules.extend(f"- {rule}" for rule in guidelines.get("rules") or [])
    return "Guidelines:\n" + "\n".join(rules)


def build_system_prompt(context: ConversationContext, language) -> str:
    """Stage template + language instruction + packages + guidelines."""
    sections = [context.system_prompt or "", language_instruction(language)]
    packages = format_package_list(context.packages)
    if packages:
        sections.append(packages)
    sections.append(format_guidelines())
    return "\n\n".join(sections)


def build_messages(message: str, context: ConversationContext) -> List[dict]:
    """Chat-style message list: bounded history followed by the new message."""
    messages = [
        {"role": "user" if item.role == "customer" else "assistant", "content": item.text}
        for item in context.history
    ]
    messages.append({"role": "user", "content": message})
    return messages


def format_history(context: ConversationContext) -> str:
    """Plain-text transcript for single-prompt APIs."""
    if not context.history:
        return "No previous messages."
    return "\n".join(
        f"{'Customer' if item.role == 'customer' else 'Assistant'}: {item.text}" for item in context.history
    )
