# Signalling protocol constants (JSON "type" tags and field names)

# Client -> relay message types
T_LOGIN = "login"
T_JOIN = "join"
T_LEAVE = "leave"
T_SIGNAL = "signal"
T_KICK = "kick"
T_LOCK = "lock"

# Relay -> client message types.
# login/join/leave/signal/lock acks reuse the request tag.
T_PEER_LIST = "peer-list"
T_PEER_CONNECT = "peer-connect"
T_PEER_DISCONNECT = "peer-disconnect"
T_KICKED = "kicked"
T_ERROR = "error"

# Envelope keys
K_TYPE = "type"
K_ID = "id"
K_ALIAS = "alias"
K_ROOM = "room"
K_TO = "to"
K_FROM = "from"
K_DATA = "data"
K_KICK = "kick"
K_LOCKED = "locked"
K_HOST = "host"
K_PEERS = "peers"
K_ICE_SERVERS = "ice_servers"
K_MESSAGE = "message"

DEFAULT_ALIAS = "Anonymous"

DEFAULT_ICE_SERVERS = (
    {"urls": "stun:stun.l.google.com:19302"},
    {"urls": "stun:stun1.l.google.com:19302"},
)

# WebSocket close codes
CLOSE_NORMAL = 1000
CLOSE_GOING_AWAY = 1001
