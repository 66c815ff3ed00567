from enum import Enum


class SessionStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"


class SenderType(str, Enum):
    VISITOR = "visitor"
    BOT = "bot"
    AGENT = "agent"


class Sentiment(str, Enum):
    URGENT = "urgent"
    NEGATIVE = "negative"
    POSITIVE = "positive"
    NEUTRAL = "neutral"


class MatchKind(str, Enum):
    INTENT = "intent"
    FAQ = "faq"
    SMALL_TALK = "small_talk"


class ReplyIntent(str, Enum):
    MATCHED = "matched"
    FAQ = "faq"
    SMALL_TALK = "small_talk"
    CONTEXTUAL = "contextual"
    AFTER_HOURS = "after_hours"
    FALLBACK = "fallback"


class ConnectionState(str, Enum):
    CONNECTED = "connected"
    INITIALIZING = "initializing"
    BOUND = "bound"
    CLOSED = "closed"


class ConnectionAction(str, Enum):
    INIT = "init"
    BIND = "bind"
    FAIL = "fail"
    CLOSE = "close"


class SessionAction(str, Enum):
    REACTIVATE = "reactivate"
    CLOSE = "close"
