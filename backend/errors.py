"""Error taxonomy for queue, admission and persistence failures.

Every error carries the HTTP status and the user-facing message the API
returns, so routes can simply let them propagate.
"""

from constants import REASON_NOT_IN_QUEUE, REASON_SYSTEM_PAUSED, REASON_WINDOW_EXPIRED


class CourtQueueError(Exception):
    status_code = 400
    message = "Request failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.message
        super().__init__(self.message)


class CapacityError(CourtQueueError):
    status_code = 409
    message = "The priority queue is full"


class AlreadyInQueueError(CourtQueueError):
    status_code = 409
    message = "User is already in the priority queue"


class QueueClosedError(CourtQueueError):
    status_code = 403
    message = "The priority queue is closed right now"


class ProfileNotFoundError(CourtQueueError):
    status_code = 404
    message = "Profile not found"


class ProfileIncompleteError(CourtQueueError):
    status_code = 422
    message = "Profile is incomplete, contact an administrator"


class EntryNotFoundError(CourtQueueError):
    status_code = 404
    message = "Queue entry not found"


class ScheduleRuleNotFoundError(CourtQueueError):
    status_code = 404
    message = "Schedule not found"


class BookingDeniedError(CourtQueueError):
    status_code = 403
    reason = ""


class NotInQueueError(BookingDeniedError):
    reason = REASON_NOT_IN_QUEUE
    message = "Only players in the priority queue can book right now"


class WindowExpiredError(BookingDeniedError):
    reason = REASON_WINDOW_EXPIRED
    message = "The priority booking window has expired"


class SystemPausedError(BookingDeniedError):
    reason = REASON_SYSTEM_PAUSED
    message = "Bookings are paused"


class PersistenceError(CourtQueueError):
    status_code = 503
    message = "Database unavailable, please try again"


class NotificationDeliveryError(CourtQueueError):
    status_code = 502
    message = "Notification could not be delivered"


DENIAL_ERRORS = {
    cls.reason: cls for cls in (NotInQueueError, WindowExpiredError, SystemPausedError)
}
