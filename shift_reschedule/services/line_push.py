"""LINE push delivery for reschedule events."""
from linebot.v3.messaging import (
    Configuration,
    ApiClient,
    MessagingApi,
    PushMessageRequest,
    TextMessage
)
from linebot.v3.messaging.exceptions import ApiException
from sqlalchemy.orm import Session
from typing import Callable, Optional
import logging

from shift_reschedule.config import settings
from shift_reschedule.models.staff import Staff
from shift_reschedule.services.notification_service import (
    EventBus,
    IdempotentHandler,
    RescheduleEvent,
    Subscription,
)


logger = logging.getLogger(__name__)


def render_message_key(event: RescheduleEvent) -> str:
    """
    Default renderer: a stable message key for the client to translate.

    Args:
        event: Event being delivered

    Returns:
        Text of the form "reschedule.<status>.<role>:<request_id>"
    """
    return (
        f"{event.category}.{event.new_status.value.lower()}."
        f"{event.recipient_role.value.lower()}:{event.request_id}"
    )


class LinePushSubscriber:
    """Event subscriber that pushes a LINE message to the recipient.

    Recipients without a linked LINE account are skipped. LINE API errors
    propagate so that the outbox row is retried.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        configuration: Optional[Configuration] = None,
        render: Callable[[RescheduleEvent], str] = render_message_key
    ):
        """
        Initialize LINE subscriber.

        Args:
            session_factory: Creates sessions for recipient lookups
            configuration: LINE Messaging API configuration
            render: Turns an event into message text
        """
        self.session_factory = session_factory
        self.configuration = configuration or Configuration(
            access_token=settings.line_channel_access_token
        )
        self.render = render

    def _line_user_id(self, staff_id: str) -> Optional[str]:
        db = self.session_factory()
        try:
            staff = db.get(Staff, staff_id)
            return staff.line_user_id if staff else None
        finally:
            db.close()

    def send(self, line_user_id: str, text: str) -> None:
        """
        Push a text message.

        Raises:
            ApiException: If the LINE API rejects the request
        """
        with ApiClient(self.configuration) as api_client:
            line_bot_api = MessagingApi(api_client)
            line_bot_api.push_message(PushMessageRequest(
                to=line_user_id,
                messages=[TextMessage(text=text)]
            ), _request_timeout=settings.line_api_timeout)

    def __call__(self, event: RescheduleEvent) -> None:
        line_user_id = self._line_user_id(event.recipient_staff_id)
        if not line_user_id:
            logger.debug(f"Staff {event.recipient_staff_id} has no LINE account, skipping")
            return

        try:
            self.send(line_user_id, self.render(event))
        except ApiException as e:
            logger.error(
                f"LINE API error sending event {event.event_id} to {event.recipient_staff_id}: "
                f"Status {e.status}, Body: {e.body}"
            )
            raise
        logger.info(f"Sent {event.new_status.value} notice for request {event.request_id} to {event.recipient_staff_id}")

    def subscribe(self, bus: EventBus) -> Subscription:
        """Attach this subscriber to a bus, deduplicating redeliveries."""
        return bus.subscribe(IdempotentHandler(self), name="line_push")
