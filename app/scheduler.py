from apscheduler.schedulers.background import BackgroundScheduler
import atexit
from datetime import datetime
from app.errors import BookingEngineError
from app.services import flash_deal_service, loyalty_service

scheduler = BackgroundScheduler()


def run_expiry_sweeps(app):
    """Expire loyalty lots and flash deals that are past due."""
    current_time = datetime.now()
    current_time_str = current_time.strftime("%Y-%m-%d %H:%M:%S")

    with app.app_context():
        try:
            points = loyalty_service.expire_old_points(now=current_time)
            deals = flash_deal_service.expire_old_flash_deals(now=current_time)
        except BookingEngineError as e:
            print(f"[SCHEDULER] {current_time_str} - Error running expiry sweeps: {e.message}")
            app.logger.error(f"Expiry sweep failed: {e.message}")
            return None

        print(
            f"[SCHEDULER] {current_time_str} - Expired {points['points_expired']} point(s) "
            f"across {points['lots_expired']} lot(s), closed {deals['deals_deactivated']} deal(s), "
            f"expired {deals['bookings_expired']} deal booking(s)"
        )
        return {"loyalty": points, "flash_deals": deals}


def init_scheduler(app):
    """Initialize the APScheduler scheduler with Flask app context."""
    minutes = int(app.config.get("SWEEP_INTERVAL_MINUTES", 60))

    scheduler.add_job(
        run_expiry_sweeps,
        "interval",
        minutes=minutes,
        args=[app],
        id="expiry_sweeps",
        replace_existing=True,
    )

    if not scheduler.running:
        scheduler.start()
        print(f"[SCHEDULER] Scheduler started, sweeping every {minutes} minute(s)")
    else:
        print("[SCHEDULER] Scheduler already running (skipping duplicate start)")

    # Shut down the scheduler when exiting the app
    atexit.register(lambda: scheduler.shutdown(wait=False) if scheduler.running else None)
