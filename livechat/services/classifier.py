"""Deterministic message classifier.

Three tiers are evaluated in order and the first hit wins:

1. intents    - ordered (name, patterns, replies) rules
2. FAQ        - keyword sets with one canned answer each
3. small talk - ordered (name, pattern, replies) rules

The rule tables below are plain data so the ordering can be audited and
extended without touching the matching code.
"""

import re
from collections.abc import Sequence
from dataclasses import dataclass

from livechat.domain.enums import MatchKind


@dataclass(frozen=True, slots=True)
class IntentRule:
    name: str
    patterns: tuple[re.Pattern[str], ...]
    replies: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class FaqRule:
    slug: str
    keywords: tuple[str, ...]
    answer: str


@dataclass(frozen=True, slots=True)
class SmallTalkRule:
    name: str
    pattern: re.Pattern[str]
    replies: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class Classification:
    kind: MatchKind
    label: str
    candidates: tuple[str, ...]


def _patterns(*sources: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(source, re.IGNORECASE) for source in sources)


DEFAULT_INTENTS: tuple[IntentRule, ...] = (
    IntentRule(
        name="greeting",
        patterns=_patterns(
            r"^(hi|hello|hey|howdy|greetings|good morning|good afternoon|good evening)",
            r"^(what'?s up|sup|yo)",
            r"^(how are you|how do you do)",
        ),
        replies=(
            "Hello! How can I help you today?",
            "Hi there! What can I assist you with?",
            "Welcome! How may I help you?",
            "Hello! I'm here to help. What do you need assistance with?",
        ),
    ),
    IntentRule(
        name="goodbye",
        patterns=_patterns(
            r"^(bye|goodbye|see you|farewell|take care|ciao|later)",
            r"^(thanks? bye|thank you,? bye)",
            r"^(have a good|have a nice)",
        ),
        replies=(
            "Goodbye! Have a great day!",
            "Thank you for chatting with us. Take care!",
            "See you later! Feel free to return if you need more help.",
            "Bye! Don't hesitate to reach out if you need anything else.",
        ),
    ),
    IntentRule(
        name="thanks",
        patterns=_patterns(
            r"^(thanks?|thank you|thx|ty)",
            r"^(appreciate|grateful)",
            r"^(you'?re? (the )?best|you rock|awesome)",
        ),
        replies=(
            "You're welcome! Happy to help!",
            "My pleasure! Is there anything else I can help with?",
            "Glad I could assist! Let me know if you need anything else.",
            "You're very welcome! 😊",
        ),
    ),
    IntentRule(
        name="help",
        patterns=_patterns(
            r"^(help|need help|can you help|help me)",
            r"^(what can you do|how can you help)",
            r"^(support|assistance|i need)",
        ),
        replies=(
            "I'm here to help! I can answer questions about our products, services, "
            "pricing, or help with technical issues. What would you like to know?",
            "I'd be happy to help! You can ask me about:\n"
            "• Product information\n• Pricing and plans\n• Technical support\n"
            "• Account questions\n\nWhat do you need help with?",
            "Sure, I can help! What specific information are you looking for?",
        ),
    ),
    IntentRule(
        name="pricing",
        patterns=_patterns(
            r"(price|pricing|cost|how much|plans?|subscription)",
            r"(free trial|trial|demo)",
            r"(payment|billing|invoice)",
        ),
        replies=(
            "We offer several pricing plans:\n\n"
            "• **Free Plan**: Perfect for small teams (up to 100 chats/month)\n"
            "• **Pro Plan**: $29/month for unlimited chats\n"
            "• **Business Plan**: $99/month with advanced features\n"
            "• **Enterprise**: Custom pricing\n\n"
            "All paid plans include a 14-day free trial. "
            "Would you like more details about any specific plan?",
        ),
    ),
    IntentRule(
        name="features",
        patterns=_patterns(
            r"(features?|functionality|what.*(do|offer)|capabilities)",
            r"(integration|api|customize|customization)",
            r"(analytics|reports?|dashboard)",
        ),
        replies=(
            "Our chat platform includes:\n\n"
            "✨ **Core Features**:\n• Real-time messaging\n• AI-powered responses\n"
            "• Conversation history\n• File sharing\n• Mobile responsive\n\n"
            "📊 **Analytics**:\n• Chat metrics\n• Response times\n"
            "• Customer satisfaction\n\n"
            "🔧 **Integrations**:\n• REST API\n• Webhooks\n• Slack/Teams\n"
            "• CRM systems\n\nWhat feature interests you most?",
        ),
    ),
    IntentRule(
        name="technical",
        patterns=_patterns(
            r"(not working|broken|error|bug|issue|problem)",
            r"(can'?t|cannot|unable to|won'?t)",
            r"(install|setup|configure|integration)",
        ),
        replies=(
            "I'm sorry you're experiencing issues. Let me help you troubleshoot:\n\n"
            "1. What specific problem are you encountering?\n"
            "2. When did this start happening?\n"
            "3. Have you tried refreshing the page?\n\n"
            "You can also email our technical team at support@neochat.com "
            "for immediate assistance.",
        ),
    ),
    IntentRule(
        name="contact",
        patterns=_patterns(
            r"(contact|email|phone|call|reach|get in touch)",
            r"(human|agent|representative|person|support team)",
            r"(sales|demo|meeting|schedule)",
        ),
        replies=(
            "Here's how to reach our team:\n\n"
            "📧 **Email**: support@neochat.com\n"
            "📞 **Phone**: 1-800-NEO-CHAT\n"
            "💬 **Live Support**: Available Mon-Fri, 9AM-6PM EST\n\n"
            "For sales inquiries: sales@neochat.com\n\n"
            "Would you like me to connect you with a human agent now?",
        ),
    ),
    IntentRule(
        name="business_hours",
        patterns=_patterns(
            r"(hours|open|closed|available|business hours)",
            r"(when.*available|support hours)",
            r"(weekend|after hours|24.7)",
        ),
        replies=(
            "Our support hours are:\n\n"
            "🕐 **Monday-Friday**: 9:00 AM - 6:00 PM EST\n"
            "🕐 **Saturday**: 10:00 AM - 4:00 PM EST\n"
            "🕐 **Sunday**: Closed\n\n"
            "Our AI assistant (that's me!) is available 24/7 to help with "
            "common questions. For urgent issues outside business hours, please "
            "email urgent@neochat.com",
        ),
    ),
)

DEFAULT_FAQS: tuple[FaqRule, ...] = (
    FaqRule(
        slug="password-reset",
        keywords=("reset", "password", "forgot", "login"),
        answer=(
            "To reset your password:\n1. Go to the login page\n"
            "2. Click 'Forgot Password'\n3. Enter your email\n"
            "4. Check your email for reset instructions\n\n"
            "If you don't receive the email within 5 minutes, check your spam folder."
        ),
    ),
    FaqRule(
        slug="widget-install",
        keywords=("widget", "install", "embed", "website", "add"),
        answer=(
            "To install the chat widget on your website:\n\n"
            "```html\n<script src=\"https://neochat.com/widget.js\" \n"
            "  data-customer-id=\"YOUR_ID\"\n  async>\n</script>\n```\n\n"
            "Just add this code before the closing </body> tag. "
            "Need help with a specific platform?"
        ),
    ),
    FaqRule(
        slug="data-privacy",
        keywords=("data", "privacy", "gdpr", "security", "encryption"),
        answer=(
            "We take data security seriously:\n\n"
            "🔒 **Encryption**: All data is encrypted in transit and at rest\n"
            "🛡️ **Compliance**: GDPR, CCPA, and SOC 2 compliant\n"
            "🔐 **Security**: Regular security audits and penetration testing\n"
            "📊 **Your Data**: You own your data and can export/delete it anytime\n\n"
            "Read our full privacy policy at neochat.com/privacy"
        ),
    ),
    FaqRule(
        slug="cancel-subscription",
        keywords=("cancel", "refund", "subscription", "unsubscribe"),
        answer=(
            "You can cancel your subscription anytime:\n\n"
            "1. Log into your dashboard\n2. Go to Settings → Billing\n"
            "3. Click 'Cancel Subscription'\n\n"
            "We offer a 30-day money-back guarantee. If you cancel within 30 days, "
            "you'll receive a full refund. No questions asked!"
        ),
    ),
    FaqRule(
        slug="developer-api",
        keywords=("api", "developers", "documentation", "integrate"),
        answer=(
            "For developers, we offer:\n\n"
            "📚 **API Documentation**: api.neochat.com/docs\n"
            "🔧 **SDKs**: JavaScript, Python, Ruby, PHP\n"
            "🎯 **Webhooks**: Real-time event notifications\n"
            "💻 **GraphQL API**: For advanced queries\n\n"
            "Need help with integration? Check our developer guide or email "
            "developers@neochat.com"
        ),
    ),
)

DEFAULT_SMALL_TALK: tuple[SmallTalkRule, ...] = (
    SmallTalkRule(
        name="how_are_you",
        pattern=re.compile(r"how are you", re.IGNORECASE),
        replies=(
            "I'm doing great, thanks for asking! How can I help you today?",
            "I'm here and ready to help! What can I do for you?",
        ),
    ),
    SmallTalkRule(
        name="name",
        pattern=re.compile(r"what'?s your name", re.IGNORECASE),
        replies=(
            "I'm Neo, your AI assistant! How can I help you today?",
            "You can call me Neo! I'm here to assist with any questions you have.",
        ),
    ),
    SmallTalkRule(
        name="robot",
        pattern=re.compile(r"are you (a )?robot", re.IGNORECASE),
        replies=(
            "I'm an AI assistant designed to help answer your questions! "
            "While I am automated, I'm here to provide real help. "
            "What can I assist you with?",
        ),
    ),
    SmallTalkRule(
        name="weather",
        pattern=re.compile(r"weather", re.IGNORECASE),
        replies=(
            "I'm focused on helping with our chat platform, but for weather updates, "
            "I'd recommend checking weather.com! Is there anything about our service "
            "I can help with?",
        ),
    ),
    SmallTalkRule(
        name="joke",
        pattern=re.compile(r"joke", re.IGNORECASE),
        replies=(
            "Why don't programmers like nature? It has too many bugs! 😄 "
            "Now, what can I help you with today?",
        ),
    ),
    SmallTalkRule(
        name="creator",
        pattern=re.compile(r"(who made|who created|who built)", re.IGNORECASE),
        replies=(
            "I was created by the Neo LiveChat team to help answer your questions! "
            "Speaking of which, what would you like to know?",
        ),
    ),
)

# Fewer words need less keyword corroboration for an FAQ hit.
SHORT_MESSAGE_MAX_TOKENS = 5


def token_count(message: str) -> int:
    return len(message.split())


class PatternClassifier:
    def __init__(
        self,
        intents: Sequence[IntentRule] = DEFAULT_INTENTS,
        faqs: Sequence[FaqRule] = DEFAULT_FAQS,
        small_talk: Sequence[SmallTalkRule] = DEFAULT_SMALL_TALK,
    ) -> None:
        self.intents = tuple(intents)
        self.faqs = tuple(faqs)
        self.small_talk = tuple(small_talk)

    def classify(self, message: str) -> Classification | None:
        return (
            self.match_intent(message)
            or self.match_faq(message.lower())
            or self.match_small_talk(message)
        )

    def match_intent(self, message: str) -> Classification | None:
        for intent in self.intents:
            if any(pattern.search(message) for pattern in intent.patterns):
                return Classification(
                    kind=MatchKind.INTENT,
                    label=intent.name,
                    candidates=intent.replies,
                )
        return None

    def match_faq(self, message: str) -> Classification | None:
        """Expects an already lowercased message."""
        short_message = token_count(message) <= SHORT_MESSAGE_MAX_TOKENS
        for faq in self.faqs:
            hits = sum(1 for keyword in faq.keywords if keyword.lower() in message)
            if hits >= 2 or (hits == 1 and short_message):
                return Classification(
                    kind=MatchKind.FAQ,
                    label=faq.slug,
                    candidates=(faq.answer,),
                )
        return None

    def match_small_talk(self, message: str) -> Classification | None:
        for rule in self.small_talk:
            if rule.pattern.search(message):
                return Classification(
                    kind=MatchKind.SMALL_TALK,
                    label=rule.name,
                    candidates=rule.replies,
                )
        return None
