from datetime import datetime, timezone

from app.schemas.context import ConversationContext, HistoryMessage, PackageSummary
from app.services.prompt_service import (
    build_messages,
    build_system_prompt,
    format_history,
    language_instruction,
)


def _context(**overrides):
    values = {
        "system_prompt": "STAGE PROMPT",
        "history": [
            HistoryMessage(role="customer", text="salam", timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc)),
            HistoryMessage(role="assistant", text="Walaikum salam!"),
        ],
        "packages": [
            PackageSummary(name="Basic", price=15000, features=["5 products", "Theme", "Domain", "Support"]),
            PackageSummary(name="Premium", price=45000, features=["Unlimited products"]),
        ],
    }
    values.update(overrides)
    return ConversationContext(**values)


class TestSystemPrompt:
    def test_assembles_sections_in_order(self):
        prompt = build_system_prompt(_context(), "english")

        assert prompt.startswith("STAGE PROMPT\n\nRespond in English.")
        assert "- Basic: Rs. 15000 (5 products, Theme, Domain)" in prompt
        assert "Support" not in prompt
        assert "- Premium: Rs. 45000 (Unlimited products)" in prompt
        assert prompt.endswith("- Don't make false promises")
        assert "- Keep responses under 200 words" in prompt

    def test_non_english_gets_roman_urdu_instruction(self):
        prompt = build_system_prompt(_context(), "urdu")

        assert "Respond in Roman Urdu" in prompt
        assert language_instruction("roman_urdu") == language_instruction("urdu")

    def test_no_packages_section_when_empty(self):
        prompt = build_system_prompt(_context(packages=[]), "english")

        assert "Available Packages" not in prompt


class TestMessages:
    def test_history_then_new_message(self):
        messages = build_messages("price?", _context())

        assert messages == [
            {"role": "user", "content": "salam"},
            {"role": "assistant", "content": "Walaikum salam!"},
            {"role": "user", "content": "price?"},
        ]

    def test_format_history(self):
        assert format_history(_context()) == "Customer: salam\nAssistant: Walaikum salam!"
        assert format_history(_context(history=[])) == "No previous messages."
