"""Notification subscribers for spec events."""

from dataclasses import dataclass, field


@dataclass
class WebhookSubscription:
    """One endpoint; an empty ``event_types`` subscribes to every topic."""

    url: str
    secret: str
    event_types: list[str] = field(default_factory=list)
    active: bool = True


class WebhookRegistry:
    """In-memory registry, filled from settings at startup and cleared at shutdown."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, WebhookSubscription] = {}

    def register(self, subscription: WebhookSubscription) -> None:
        # Re-registering a URL replaces its subscription
        self._subscriptions[subscription.url] = subscription

    def register_urls(self, urls: list[str], secret: str, event_types: list[str]) -> int:
        for url in urls:
            self.register(WebhookSubscription(url=url, secret=secret, event_types=list(event_types)))
        return len(urls)

    def unregister(self, url: str) -> None:
        self._subscriptions.pop(url, None)

    def get_subscribers(self, event_type: str) -> list[WebhookSubscription]:
        return [
            s
            for s in self._subscriptions.values()
            if s.active and (not s.event_types or event_type in s.event_types)
        ]

    def list_all(self) -> list[WebhookSubscription]:
        return list(self._subscriptions.values())

    def clear(self) -> None:
        self._subscriptions.clear()


webhook_registry = WebhookRegistry()
