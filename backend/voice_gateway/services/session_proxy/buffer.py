"""Bounded FIFO of client frames waiting for an open upstream connection."""

from collections import deque
from dataclasses import dataclass

from voice_gateway.services.session_proxy.exceptions import BufferOverflowError
from voice_gateway.services.session_proxy.models import OverflowPolicy, Payload


@dataclass
class BufferedMessage:
    payload: Payload
    attempts: int = 0


class OutboundBuffer:
    """Ordered client → upstream backlog with an explicit overflow policy.

    ``capacity`` of 0 means unbounded. Requeued messages go back to the head
    and are exempt from the capacity check, so a retry never evicts itself.

    Usage::

        buf = OutboundBuffer(capacity=1000, overflow_policy=OverflowPolicy.DROP_OLDEST)
        buf.append(frame)
        while buf:
            item = buf.popleft()
            ...
    """

    def __init__(
        self,
        capacity: int = 0,
        overflow_policy: OverflowPolicy = OverflowPolicy.DROP_OLDEST,
    ) -> None:
        if capacity < 0:
            raise ValueError("capacity must be >= 0")
        self._capacity = capacity
        self._policy = OverflowPolicy(overflow_policy)
        self._items: deque[BufferedMessage] = deque()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def overflow_policy(self) -> OverflowPolicy:
        return self._policy

    def __len__(self) -> int:
        return len(self._items)

    def append(self, payload: Payload) -> BufferedMessage | None:
        """Enqueue a frame at the tail.

        Returns:
            The evicted head message under DROP_OLDEST when the buffer was
            full, otherwise None.

        Raises:
            BufferOverflowError: If the buffer is full and the policy is REJECT.
        """
        evicted = None
        if self._capacity and len(self._items) >= self._capacity:
            if self._policy == OverflowPolicy.REJECT:
                raise BufferOverflowError(self._capacity)
            evicted = self._items.popleft()
        self._items.append(BufferedMessage(payload=payload))
        return evicted

    def popleft(self) -> BufferedMessage:
        return self._items.popleft()

    def requeue(self, item: BufferedMessage, count_attempt: bool = True) -> None:
        """Put a message back at the head, charging it one send attempt unless told otherwise."""
        if count_attempt:
            item.attempts += 1
        self._items.appendleft(item)

    def clear(self) -> int:
        """Discard everything. Returns the number of messages dropped."""
        count = len(self._items)
        self._items.clear()
        return count

    def payloads(self) -> list[Payload]:
        return [item.payload for item in self._items]
