from types import SimpleNamespace

from app.services.stage_service import (
    Stage,
    classify,
    extract_intent,
    get_stage_prompt,
    summarize_conversation,
)


def customer(text):
    return {"role": "customer", "text": text}


def assistant(text):
    return {"role": "assistant", "text": text}


class TestClassifyOrders:
    def test_in_progress_order_forces_post_sale(self):
        orders = [{"status": "in_progress"}]

        assert classify(orders, [customer("kya price hai")]) == Stage.POST_SALE

    def test_pending_order_is_post_sale(self):
        assert classify([SimpleNamespace(status="pending")], []) == Stage.POST_SALE

    def test_active_order_wins_over_completed(self):
        orders = [{"status": "completed"}, {"status": "pending"}]

        assert classify(orders, []) == Stage.POST_SALE

    def test_completed_order_is_returning_customer(self):
        orders = [{"status": "completed"}, {"status": "cancelled"}]

        assert classify(orders, [customer("payment kaise karun")]) == Stage.RETURNING_CUSTOMER


class TestClassifyKeywords:
    def test_payment_beats_price(self):
        messages = [customer("price kitna hai"), customer("easypaisa se pay kar doon?")]

        assert classify([], messages) == Stage.PAYMENT

    def test_price_keywords(self):
        assert classify([], [customer("Basic PACKAGE ka rate?")]) == Stage.PRICING

    def test_feature_keywords(self):
        assert classify([], [customer("is mein kya milega")]) == Stage.FEATURES

    def test_only_last_three_customer_messages_count(self):
        messages = [
            customer("price batao"),
            customer("acha"),
            assistant("Basic package Rs. 15000"),
            customer("theek"),
            customer("ok"),
            assistant("Aur kuch?"),
        ]

        assert classify([], messages) == Stage.SALES

    def test_assistant_text_is_ignored(self):
        messages = [assistant("Payment bank transfer se hogi"), customer("ok"), customer("hmm"), customer("acha")]

        assert classify([], messages) == Stage.SALES


class TestClassifyCounts:
    def test_short_conversation_is_greeting(self):
        assert classify([], [customer("hello"), assistant("Hi!")]) == Stage.GREETING

    def test_explicit_message_count_overrides_length(self):
        assert classify([], [customer("hello")], message_count=7) == Stage.SALES

    def test_empty_history_is_greeting(self):
        assert classify([], []) == Stage.GREETING

    def test_keywords_take_precedence_over_greeting(self):
        assert classify([], [customer("hi"), customer("kya price hai")], message_count=2) == Stage.PRICING

    def test_is_deterministic(self):
        orders = [{"status": "cancelled"}]
        messages = [customer("hello"), assistant("hi"), customer("service kya hai")]

        assert {classify(orders, messages) for _ in range(5)} == {Stage.FEATURES}


class TestStagePrompt:
    def test_english_variant(self):
        prompt = get_stage_prompt(Stage.GREETING, "english")

        assert prompt.startswith("You are a professional sales assistant")

    def test_urdu_variant_for_roman_urdu(self):
        prompt = get_stage_prompt(Stage.GREETING, "roman_urdu")

        assert prompt.startswith("Aap ek professional sales assistant")

    def test_pricing_extends_sales_template(self):
        prompt = get_stage_prompt(Stage.PRICING, "english")

        assert prompt.startswith(get_stage_prompt(Stage.SALES, "english"))
        assert prompt.endswith("Share package details clearly.")

    def test_unknown_stage_falls_back_to_sales(self):
        assert get_stage_prompt("something_else", "english") == get_stage_prompt(Stage.SALES, "english")


class TestExtractIntent:
    def test_known_intents(self):
        assert extract_intent("Assalam o alaikum") == "greeting"
        assert extract_intent("fee kya hai") == "pricing"
        assert extract_intent("I have a problem") == "support"
        assert extract_intent("shukriya bhai") == "thanks"
        assert extract_intent("khuda hafiz") == "bye"

    def test_general_fallback(self):
        assert extract_intent("ok") == "general"
        assert extract_intent(None) == "general"


class TestSummarizeConversation:
    def test_counts_and_topics(self):
        messages = [
            {"role": "customer", "text": "price kitna hai", "timestamp": 1},
            {"role": "assistant", "text": "15000", "timestamp": 2},
            {"role": "customer", "text": "delivery kab hogi", "timestamp": 3},
        ]

        summary = summarize_conversation(messages)

        assert summary["total_messages"] == 3
        assert summary["customer_messages"] == 2
        assert summary["assistant_messages"] == 1
        assert summary["topics"] == ["pricing", "delivery"]
        assert summary["first_message_at"] == 1
        assert summary["last_message_at"] == 3

    def test_empty_returns_none(self):
        assert summarize_conversation([]) is None
