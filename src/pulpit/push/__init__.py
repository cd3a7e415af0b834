"""Push delivery: the dispatcher protocol, APNs, and notification fan-out."""

from pulpit.push.apns import APNsDispatcher, ProviderTokenSigner
from pulpit.push.dispatcher import PushDispatcher
from pulpit.push.fanout import FanoutResult, NotificationFanout

__all__ = [
    "APNsDispatcher",
    "FanoutResult",
    "NotificationFanout",
    "ProviderTokenSigner",
    "PushDispatcher",
]
