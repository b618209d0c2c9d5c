"""User and group sync (simple variant, whole-set push then strategy pull)."""
from splitsync.models.entities import Group, User
from splitsync.sync.base import BaseSyncManager
from splitsync.sync.codec import EntityCodec
from splitsync.sync.conflicts import last_writer_wins, server_wins
from splitsync.sync.managers.common import RecordSyncMixin

USER_CODEC = EntityCodec(User, fields=("username", "email", "default_currency"))
GROUP_CODEC = EntityCodec(Group, fields=("name", "default_currency", "description"))


class UserSyncManager(RecordSyncMixin, BaseSyncManager[User]):
    entity_type = "users"
    sync_priority = 10
    model = User
    codec = USER_CODEC
    resource = "users"

    def resolve_conflicts(self, local: User, server: User) -> User:
        # profiles are owned by the server
        return server_wins(local, server)


class GroupSyncManager(RecordSyncMixin, BaseSyncManager[Group]):
    entity_type = "groups"
    sync_priority = 20
    model = Group
    codec = GROUP_CODEC
    resource = "groups"

    def resolve_conflicts(self, local: Group, server: Group) -> Group:
        return last_writer_wins(local, server)
