"""
Тесты периодических задач
"""
import asyncio
import logging

from database.models import Booking, BookingStatus
from utils.scheduler import refresh_booking_statuses_job, start_scheduler


class BrokenBookingService:
    def refresh_statuses(self):
        raise RuntimeError("database is locked")


class TestJobs:

    def test_refresh_job_logs_and_survives_errors(self, caplog):
        with caplog.at_level(logging.ERROR):
            asyncio.run(refresh_booking_statuses_job(BrokenBookingService()))

        assert "Ошибка при обновлении статусов броней" in caplog.text

    def test_refresh_job_updates_statuses(self, booking_service, bookings_repo, clock, console_id):
        booking = Booking(id=None, station_id=console_id, customer_id=1, booking_date=clock().date(),
                          start_time="11:00:00", end_time="12:00:00", duration=60)
        booking_id = bookings_repo.create_booking(booking)

        asyncio.run(refresh_booking_statuses_job(booking_service))

        assert bookings_repo.get_booking(booking_id).status == BookingStatus.NO_SHOW.value

    def test_start_scheduler_registers_jobs(self, booking_service):
        async def run():
            scheduler = await start_scheduler(booking_service)
            try:
                return [job.id for job in scheduler.get_jobs()]
            finally:
                scheduler.shutdown(wait=False)

        assert asyncio.run(run()) == ['refresh_booking_statuses']
