from kotone.event.dispatcher import (
    ChannelDispatcher as ChannelDispatcher,
    EventContext as EventContext,
    start_consumer_task as start_consumer_task,
)
from kotone.event.model import (
    Connected as Connected,
    DispatchedEvent as DispatchedEvent,
    InteractionCreate as InteractionCreate,
    MessageCreate as MessageCreate,
    PresenceUpdate as PresenceUpdate,
    Ready as Ready,
    ShardReady as ShardReady,
)
from kotone.event.parser import EventParser as EventParser
