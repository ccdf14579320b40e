"""Notification sources used to tell interested code about account and scan events"""

from typing import Callable, Dict, Optional, Tuple


class NotificationRegistration:
    """Represents a registered callback; can be used to remove the registration. Obtain this
    by calling NotificationSource.register."""

    def __init__(self, notification_source: Optional["NotificationSource"], callback_id: int) -> None:
        self.notification_source = notification_source
        self.callback_id = callback_id

    @property
    def is_registered(self) -> bool:
        """True if this registration is still registered; if false it has been unregistered and
        won't fire anymore."""
        return bool(self.notification_source) and self.callback_id in self.notification_source._callbacks

    def unregister(self) -> None:
        """Unregisters a callback that register() had registered."""
        if self.notification_source:
            self.notification_source._callbacks.pop(self.callback_id, None)
            self.notification_source = None


class NotificationSource:
    """A class to inform interested code of changes or of an event; these are usually global objects.

    The fire() method may be passed arguments, and these are passed on to any handlers. Handlers
    run synchronously on the thread that fires the notification, so a presentation layer with its
    own main loop is expected to hop back onto it.
    """

    def __init__(self) -> None:
        self._callbacks: Dict[int, Tuple[Callable, int]] = {}
        self._next_callback_id = 1

    def fire(self, *args, **kwargs) -> None:
        """Signals that the thing, whatever it is, has happened. Callbacks run in priority order."""
        ordered = sorted(self._callbacks.values(), key=lambda t: t[1])
        for callback, _priority in ordered:
            callback(*args, **kwargs)

    def register(self, callback: Callable, priority: int = 0) -> NotificationRegistration:
        """Registers a callback to be called after the thing, whatever it is, has happened.

        Returns registration object to use to unregister the callback."""
        callback_id = self._next_callback_id
        self._callbacks[callback_id] = (callback, priority)
        self._next_callback_id += 1
        return NotificationRegistration(self, callback_id)
