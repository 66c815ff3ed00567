from enum import Enum


class ClientMessageType(str, Enum):
    INIT = "init"
    MESSAGE = "message"
    PING = "ping"


class ServerEvent(str, Enum):
    CONNECTED = "connected"
    INITIALIZED = "initialized"
    MESSAGE = "message"
    NOTIFICATION = "notification"
    TYPING = "typing"
    ERROR = "error"
    PONG = "pong"
