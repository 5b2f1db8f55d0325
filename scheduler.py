import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from config import get_settings
from database import session_scope
from recurrence import local_today
from services import ObligationService, SavingsGoalService, SavingsService


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.horizon_months = settings.horizon_months
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        logger.info(f"scheduler_run: source={source}")
        today = local_today()
        with session_scope() as session:
            changed = ObligationService(session).synchronize_all(self.horizon_months)
            accrued = SavingsService(session).record_monthly_savings(
                today.year, today.month
            )
            goals = SavingsGoalService(session).record_monthly_savings(
                today.year, today.month
            )
            logger.info(
                f"scheduler_run: source={source} definitions_changed={changed} "
                f"balances_accrued={accrued} goals_accrued={goals}"
            )

    def start(self) -> None:
        self._run_job("startup")

        trigger = CronTrigger(hour=3, minute=15)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["daily_03:15"],
            id="obligations_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info("Scheduler started with daily 03:15 run")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
