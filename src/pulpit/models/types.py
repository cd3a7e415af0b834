"""Type aliases for Pulpit.

Aliases document the semantic meaning of the string types passed around
the gateway.
"""

from typing import TypeAlias

DeviceID: TypeAlias = str
"""Opaque stable device identifier"""

CorrelationID: TypeAlias = str
"""Identifier linking an outbound command to its inbound result (ULID format)"""

TaskID: TypeAlias = str
"""Scheduled task identifier (ULID format)"""

DeviceToken: TypeAlias = str
"""APNs device token (hex string)"""

RegistrationCredential: TypeAlias = str
"""Secret a device presents in its auth frame; distinct from the push token"""
