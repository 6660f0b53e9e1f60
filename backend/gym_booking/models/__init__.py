from gym_booking.models.class_session import ClassSession
from gym_booking.models.reservation import Reservation, ReservationStatus

__all__ = ["ClassSession", "Reservation", "ReservationStatus"]
