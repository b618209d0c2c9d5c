"""
Group membership and per-group default splits.

Both run after groups and before payments: a payment's splits reference
members, and new payments start from the group's default percentages.
Leaving a group is a soft removal (removed_at) that travels like any other
field edit; a hard server delete goes through apply_server_record.
"""
from splitsync.models.entities import Group, GroupDefaultSplit, GroupMember, User
from splitsync.sync.batched import BatchedSyncManager
from splitsync.sync.codec import EntityCodec
from splitsync.sync.conflicts import last_writer_wins
from splitsync.sync.managers.common import RecordSyncMixin

GROUP_MEMBER_CODEC = EntityCodec(
    GroupMember,
    fields=("removed_at",),
    references={"group_id": Group, "user_id": User},
    datetimes=("removed_at",),
)
GROUP_DEFAULT_SPLIT_CODEC = EntityCodec(
    GroupDefaultSplit,
    fields=("percentage", "removed_at"),
    references={"group_id": Group, "user_id": User},
    decimals=("percentage",),
    datetimes=("removed_at",),
)


class GroupMemberSyncManager(RecordSyncMixin, BatchedSyncManager[GroupMember, dict]):
    entity_type = "group_members"
    sync_priority = 23
    batch_size = 50
    model = GroupMember
    codec = GROUP_MEMBER_CODEC
    resource = "group-members"

    def resolve_conflicts(self, local, server):
        return last_writer_wins(local, server)


class GroupDefaultSplitSyncManager(RecordSyncMixin, BatchedSyncManager[GroupDefaultSplit, dict]):
    entity_type = "group_default_splits"
    sync_priority = 26
    batch_size = 20
    model = GroupDefaultSplit
    codec = GROUP_DEFAULT_SPLIT_CODEC
    resource = "group-default-splits"

    def resolve_conflicts(self, local, server):
        return last_writer_wins(local, server)
