import random
import re
from collections import OrderedDict
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol
from zoneinfo import ZoneInfo

from livechat.core.config import Settings, get_settings
from livechat.domain.enums import ReplyIntent, SenderType, Sentiment
from livechat.services.classifier import PatternClassifier, token_count

INTENT_CONFIDENCE = 0.9
FAQ_CONFIDENCE = 0.85
SMALL_TALK_CONFIDENCE = 0.7
CONTEXTUAL_CONFIDENCE = 0.75
AFTER_HOURS_CONFIDENCE = 0.6
FALLBACK_CONFIDENCE = 0.3

# Evaluated in order; a message sets at most one topic.
TOPIC_TRIGGERS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("pricing", re.compile(r"pric|cost|plan|subscription", re.IGNORECASE)),
    ("features", re.compile(r"feature|function|capabilit", re.IGNORECASE)),
)

TOPIC_FOLLOW_UPS: dict[str, str] = {
    "pricing": (
        "Here are more details about our pricing:\n\n"
        "• **Free Plan**: 100 chats/month, 1 agent, basic features\n"
        "• **Pro Plan**: Unlimited chats, 5 agents, API access, priority support\n"
        "• **Business Plan**: Everything in Pro + custom branding, advanced "
        "analytics, SLA\n\nWould you like to start a free trial?"
    ),
    "features": (
        "Additional features include:\n\n"
        "• **Automation**: Set up auto-responses and chat flows\n"
        "• **Team Collaboration**: Internal notes and agent handoff\n"
        "• **Custom Fields**: Collect specific customer information\n"
        "• **Export Options**: Download chat transcripts and analytics\n"
        "• **White Label**: Remove our branding on Business plan\n\n"
        "Anything specific you'd like to explore?"
    ),
}

FOLLOW_UP_MARKERS = ("more", "else")

AFTER_HOURS_REPLY = (
    "I'm here to help! While our human support team is currently offline "
    "(business hours: Mon-Fri 9AM-6PM EST), I can assist with most questions. "
    "What do you need help with?"
)

TELL_ME_MORE_REPLY = (
    "Could you tell me a bit more about what you need help with? I'm here to "
    "assist with questions about our chat platform, pricing, features, or "
    "technical support."
)

FALLBACK_REPLIES: tuple[str, ...] = (
    "I'm not quite sure about that. Could you rephrase your question? "
    "Or would you like to speak with a human agent?",
    "I don't have a specific answer for that, but I'd be happy to connect you "
    "with our support team who can help!",
    "That's a great question! For the most accurate answer, let me connect you "
    "with our support team. Would you like me to do that?",
    "I want to make sure you get the right information. You can either rephrase "
    "your question, or I can connect you with a specialist. What would you prefer?",
)

SHORT_FALLBACK_MAX_TOKENS = 2

# First matching set wins, in this order.
SENTIMENT_MARKERS: tuple[tuple[Sentiment, re.Pattern[str]], ...] = (
    (Sentiment.URGENT, re.compile(r"urgent|emergency|asap|immediately|now|help!", re.IGNORECASE)),
    (
        Sentiment.NEGATIVE,
        re.compile(r"😞|😠|😡|😤|bad|terrible|awful|hate|worst|horrible|sucks", re.IGNORECASE),
    ),
    (
        Sentiment.POSITIVE,
        re.compile(r"😊|😄|🙂|😃|great|excellent|good|thanks|love|awesome|perfect", re.IGNORECASE),
    ),
)

HUMAN_REQUEST = re.compile(
    r"human|agent|representative|person|real person|speak to|talk to someone",
    re.IGNORECASE,
)
SENSITIVE_TOPICS = re.compile(
    r"refund|legal|lawsuit|injured|emergency|urgent.*help", re.IGNORECASE
)
LONG_NEGATIVE_MESSAGE_CHARS = 100


class HistoryEntry(Protocol):
    sender_type: SenderType
    content: str


@dataclass(slots=True)
class GeneratedReply:
    response: str
    intent: ReplyIntent
    confidence: float


@dataclass(slots=True)
class TopicMemory:
    last_topic: str | None = None

    def remember(self, topic: str) -> None:
        self.last_topic = topic


def detect_topic(message: str) -> str | None:
    for topic, trigger in TOPIC_TRIGGERS:
        if trigger.search(message):
            return topic
    return None


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ResponseGenerator:
    """Rule-based replies with per-session topic memory.

    ``choose`` and ``clock`` are injectable so tests can pin the random reply
    pick and the after-hours check.
    """

    def __init__(
        self,
        classifier: PatternClassifier | None = None,
        settings: Settings | None = None,
        choose: Callable[[Sequence[str]], str] = random.choice,
        clock: Callable[[], datetime] | None = None,
        memory_limit: int | None = None,
    ) -> None:
        self.classifier = classifier or PatternClassifier()
        self.settings = settings or get_settings()
        self.choose = choose
        self.clock = clock or _utcnow
        self.memory_limit = memory_limit or self.settings.topic_memory_limit
        self._memory: OrderedDict[str, TopicMemory] = OrderedDict()

    def generate_response(
        self,
        message: str,
        session_id: Any,
        history: Sequence[HistoryEntry] | None = None,
    ) -> GeneratedReply:
        lower_message = message.lower().strip()
        memory = self._update_memory(str(session_id), message, history)

        intent = self.classifier.match_intent(message)
        if intent is not None:
            return GeneratedReply(
                response=self.choose(intent.candidates),
                intent=ReplyIntent.MATCHED,
                confidence=INTENT_CONFIDENCE,
            )

        faq = self.classifier.match_faq(lower_message)
        if faq is not None:
            return GeneratedReply(
                response=faq.candidates[0],
                intent=ReplyIntent.FAQ,
                confidence=FAQ_CONFIDENCE,
            )

        small_talk = self.classifier.match_small_talk(message)
        if small_talk is not None:
            return GeneratedReply(
                response=self.choose(small_talk.candidates),
                intent=ReplyIntent.SMALL_TALK,
                confidence=SMALL_TALK_CONFIDENCE,
            )

        follow_up = self._contextual_reply(memory, lower_message)
        if follow_up is not None:
            return GeneratedReply(
                response=follow_up,
                intent=ReplyIntent.CONTEXTUAL,
                confidence=CONTEXTUAL_CONFIDENCE,
            )

        if self.is_after_hours() and "now" in lower_message:
            return GeneratedReply(
                response=AFTER_HOURS_REPLY,
                intent=ReplyIntent.AFTER_HOURS,
                confidence=AFTER_HOURS_CONFIDENCE,
            )

        return GeneratedReply(
            response=self._fallback_reply(message),
            intent=ReplyIntent.FALLBACK,
            confidence=FALLBACK_CONFIDENCE,
        )

    def analyze_sentiment(self, message: str) -> Sentiment:
        for sentiment, markers in SENTIMENT_MARKERS:
            if markers.search(message):
                return sentiment
        return Sentiment.NEUTRAL

    def needs_human_agent(self, message: str, sentiment: Sentiment) -> bool:
        return (
            HUMAN_REQUEST.search(message) is not None
            or SENSITIVE_TOPICS.search(message) is not None
            or sentiment == Sentiment.URGENT
            or (
                sentiment == Sentiment.NEGATIVE
                and len(message) > LONG_NEGATIVE_MESSAGE_CHARS
            )
        )

    def is_after_hours(self, now: datetime | None = None) -> bool:
        """Weekends, and weekdays outside the configured opening hours."""
        moment = now or self.clock()
        local = moment.astimezone(ZoneInfo(self.settings.business_timezone))
        if local.weekday() >= 5:
            return True
        return not (
            self.settings.business_open_hour
            <= local.hour
            < self.settings.business_close_hour
        )

    def last_topic(self, session_id: Any) -> str | None:
        memory = self._memory.get(str(session_id))
        return memory.last_topic if memory is not None else None

    def _update_memory(
        self,
        key: str,
        message: str,
        history: Sequence[HistoryEntry] | None,
    ) -> TopicMemory:
        memory = self._memory.get(key)
        if memory is None:
            memory = TopicMemory()
            # Rebuild from stored history when memory was lost, e.g. after a restart.
            for entry in history or ():
                if entry.sender_type != SenderType.VISITOR:
                    continue
                topic = detect_topic(entry.content)
                if topic is not None:
                    memory.remember(topic)
            self._memory[key] = memory
        self._memory.move_to_end(key)
        while len(self._memory) > self.memory_limit:
            self._memory.popitem(last=False)

        topic = detect_topic(message)
        if topic is not None:
            memory.remember(topic)
        return memory

    @staticmethod
    def _contextual_reply(memory: TopicMemory, lower_message: str) -> str | None:
        if not any(marker in lower_message for marker in FOLLOW_UP_MARKERS):
            return None
        if memory.last_topic is None:
            return None
        return TOPIC_FOLLOW_UPS.get(memory.last_topic)

    def _fallback_reply(self, message: str) -> str:
        if token_count(message) <= SHORT_FALLBACK_MAX_TOKENS:
            return TELL_ME_MORE_REPLY
        return self.choose(FALLBACK_REPLIES)
