from fastapi import HTTPException, status

from slot_booking.core.results import BookingErrorKind, Err

STATUS_BY_KIND: dict[BookingErrorKind, int] = {
    BookingErrorKind.USER_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    BookingErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    BookingErrorKind.USER_NOT_APPROVED: status.HTTP_403_FORBIDDEN,
    BookingErrorKind.SLOT_CONFLICT: status.HTTP_409_CONFLICT,
    BookingErrorKind.INVALID_STATE: status.HTTP_409_CONFLICT,
    BookingErrorKind.PAST_DATE_REJECTED: status.HTTP_422_UNPROCESSABLE_ENTITY,
    BookingErrorKind.INVALID_SLOT: status.HTTP_422_UNPROCESSABLE_ENTITY,
    BookingErrorKind.PROVISIONING_FAILED: status.HTTP_502_BAD_GATEWAY,
    BookingErrorKind.STORE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    BookingErrorKind.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
}


def http_error(err: Err) -> HTTPException:
    return HTTPException(
        status_code=STATUS_BY_KIND.get(err.kind, status.HTTP_400_BAD_REQUEST),
        detail={"error": err.kind.value, "message": err.message},
    )
