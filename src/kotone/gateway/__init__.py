from kotone.gateway.collection import (
    GatewayCollection as GatewayCollection,
    GatewayWrapper as GatewayWrapper,
)
from kotone.gateway.conn import (
    GatewayConnection as GatewayConnection,
    GatewayState as GatewayState,
    run_gateway_loop as run_gateway_loop,
)
from kotone.gateway.event import (
    GatewayDisconnected as GatewayDisconnected,
    GatewayDispatch as GatewayDispatch,
    GatewayHeartbeatAck as GatewayHeartbeatAck,
    GatewayHeartbeatSent as GatewayHeartbeatSent,
    GatewayHello as GatewayHello,
    GatewayInvalidateSession as GatewayInvalidateSession,
    GatewayPresenceUpdate as GatewayPresenceUpdate,
    GatewayReconnectRequested as GatewayReconnectRequested,
    IncomingGatewayEvent as IncomingGatewayEvent,
    OutgoingGatewayEvent as OutgoingGatewayEvent,
)
from kotone.gateway.heartbeat import HeartbeatTimer as HeartbeatTimer
from kotone.gateway.packets import GatewayOp as GatewayOp, PacketDispatcher as PacketDispatcher
from kotone.gateway.session import GatewaySession as GatewaySession
