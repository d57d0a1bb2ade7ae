from kotone.models.embed import (
    Embed as Embed,
    EmbedAuthor as EmbedAuthor,
    EmbedField as EmbedField,
    EmbedFooter as EmbedFooter,
    EmbedImage as EmbedImage,
)
from kotone.models.interaction import (
    CommandOption as CommandOption,
    Interaction as Interaction,
    InteractionKind as InteractionKind,
    InteractionResponseType as InteractionResponseType,
)
from kotone.models.message import RawMessage as RawMessage
from kotone.models.presence import (
    Activity as Activity,
    ActivityType as ActivityType,
    Presence as Presence,
    PresenceStatus as PresenceStatus,
    SendablePresenceStatus as SendablePresenceStatus,
)
