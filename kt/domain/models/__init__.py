from kt.domain.models.message import Message, MessageRecord
from kt.domain.models.offsets import NO_OFFSET, ConsumerGroup, GroupOffsetsView, OffsetSpec, PartitionOffset
from kt.domain.models.produce import InputRecord, ProduceRequest, ProduceSummary
from kt.domain.models.topic import PartitionView, TopicDetail, TopicView

__all__ = [
    "ConsumerGroup",
    "GroupOffsetsView",
    "InputRecord",
    "Message",
    "MessageRecord",
    "NO_OFFSET",
    "OffsetSpec",
    "PartitionOffset",
    "PartitionView",
    "ProduceRequest",
    "ProduceSummary",
    "TopicDetail",
    "TopicView",
]
