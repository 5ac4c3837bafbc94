"""
Cost control for the AI Gateway.

Per-device spend ceilings checked before every provider call, an
append-only usage ledger, and once-per-period threshold alerts.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional
from zoneinfo import ZoneInfo

from aigateway.errors import CostLimitExceeded
from aigateway.models import AlertType, CostAlert, CostLimits, ModelConfig, UsageRecord
from aigateway.schemas import CompletionResult, PreflightResult
from aigateway.storage import StorageBackend

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 200


def _preview(message: Optional[str]) -> Optional[str]:
    if message is None:
        return None
    return message[:PREVIEW_LENGTH]


class CostGovernor:
    """
    Spend enforcement and accounting per device.

    Example:
        ```python
        governor = CostGovernor(SQLiteStorage("gateway.db"))
        limits = CostLimits(daily_usd=1.0, monthly_usd=20.0)

        # Before a provider call
        governor.check("device-1", limits)

        # After it returns
        governor.record_success("device-1", result, model, response_time_ms=840)
        governor.check_and_alert("device-1", limits)
        ```
    """

    def __init__(
        self,
        storage: StorageBackend,
        timezone_name: str = "Asia/Jakarta",
        fail_open_on_ledger_error: bool = True,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the governor.

        Args:
            storage: Ledger and alert store.
            timezone_name: IANA zone that defines "today" and "this month".
            fail_open_on_ledger_error: Allow calls when the ledger cannot be read.
            clock: Returns the current aware datetime (for tests).
        """
        self.storage = storage
        self.timezone_name = timezone_name
        self.fail_open_on_ledger_error = fail_open_on_ledger_error
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # =========================================================================
    # Periods
    # =========================================================================

    def _local_now(self, timezone_name: Optional[str] = None) -> datetime:
        return self._clock().astimezone(ZoneInfo(timezone_name or self.timezone_name))

    @staticmethod
    def _day_start(local_now: datetime) -> datetime:
        return local_now.replace(hour=0, minute=0, second=0, microsecond=0)

    @staticmethod
    def _month_start(local_now: datetime) -> datetime:
        return local_now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    def _period_totals(self, device_id: str, local_now: datetime) -> tuple[float, float]:
        daily = self.storage.sum_cost_since(device_id, self._day_start(local_now))
        monthly = self.storage.sum_cost_since(device_id, self._month_start(local_now))
        return daily, monthly

    # =========================================================================
    # Preflight
    # =========================================================================

    def preflight(
        self,
        device_id: str,
        limits: CostLimits,
        timezone_name: Optional[str] = None,
    ) -> PreflightResult:
        """
        Check whether a device may spend on another call.

        A device is blocked once today's or this month's successful spend
        is at or above its ceiling.
        """
        if not limits.tracking_enabled:
            return PreflightResult(allowed=True)

        local_now = self._local_now(timezone_name)
        try:
            daily, monthly = self._period_totals(device_id, local_now)
        except Exception as e:  # backends raise their own driver errors
            if self.fail_open_on_ledger_error:
                logger.warning("Cost ledger unavailable for %s, allowing call: %s", device_id, e)
                return PreflightResult(allowed=True, reason="ledger unavailable")
            logger.warning("Cost ledger unavailable for %s, blocking call: %s", device_id, e)
            return PreflightResult(
                allowed=False,
                reason=f"Cost ledger unavailable: {e}",
                period="ledger",
            )

        if daily >= limits.daily_usd:
            return PreflightResult(
                allowed=False,
                reason=f"Daily cost limit reached (${daily:.6f}/${limits.daily_usd:.6f})",
                period="daily",
                daily_cost=daily,
                monthly_cost=monthly,
            )

        if monthly >= limits.monthly_usd:
            return PreflightResult(
                allowed=False,
                reason=f"Monthly cost limit reached (${monthly:.6f}/${limits.monthly_usd:.6f})",
                period="monthly",
                daily_cost=daily,
                monthly_cost=monthly,
            )

        logger.debug("Preflight ok for %s: daily=$%.6f monthly=$%.6f", device_id, daily, monthly)
        return PreflightResult(allowed=True, daily_cost=daily, monthly_cost=monthly)

    def check(
        self,
        device_id: str,
        limits: CostLimits,
        timezone_name: Optional[str] = None,
    ) -> PreflightResult:
        """
        Raising form of ``preflight``.

        Raises:
            CostLimitExceeded: If the device may not spend.
        """
        result = self.preflight(device_id, limits, timezone_name)
        if result.allowed:
            return result

        if result.period == "monthly":
            raise CostLimitExceeded(device_id, "monthly", result.monthly_cost, limits.monthly_usd)
        if result.period == "daily":
            raise CostLimitExceeded(device_id, "daily", result.daily_cost, limits.daily_usd)
        raise CostLimitExceeded(device_id, result.period or "ledger", 0.0, 0.0, reason=result.reason)

    # =========================================================================
    # Usage Recording
    # =========================================================================

    def record_usage(self, record: UsageRecord) -> UsageRecord:
        """Append a usage record, successful or not."""
        self.storage.add_usage(record)
        if record.success:
            logger.info(
                "Usage %s %s/%s: %d tokens, $%.6f, %dms",
                record.device_id,
                record.provider,
                record.model,
                record.total_tokens,
                record.cost_usd,
                record.response_time_ms,
            )
        else:
            logger.warning(
                "Failed call %s %s/%s: %s",
                record.device_id,
                record.provider,
                record.model,
                record.error_message,
            )
        return record

    def record_success(
        self,
        device_id: str,
        result: CompletionResult,
        model: ModelConfig,
        response_time_ms: int = 0,
        chat_id: Optional[str] = None,
        message: Optional[str] = None,
    ) -> UsageRecord:
        """Record a successful call, priced from the model's rates."""
        usage = result.usage
        return self.record_usage(UsageRecord(
            device_id=device_id,
            provider=result.provider,
            model=result.model,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
            cost_usd=model.cost_for(usage.prompt_tokens, usage.completion_tokens),
            success=True,
            response_time_ms=response_time_ms,
            chat_id=chat_id,
            message_preview=_preview(message),
            created_at=self._clock(),
        ))

    def record_failure(
        self,
        device_id: str,
        provider: str,
        model: str,
        error: Exception,
        response_time_ms: int = 0,
        chat_id: Optional[str] = None,
        message: Optional[str] = None,
    ) -> UsageRecord:
        """Record a failed call. Failed calls cost nothing."""
        return self.record_usage(UsageRecord(
            device_id=device_id,
            provider=provider,
            model=model,
            cost_usd=0.0,
            success=False,
            response_time_ms=response_time_ms,
            error_message=str(error) or error.__class__.__name__,
            chat_id=chat_id,
            message_preview=_preview(message),
            created_at=self._clock(),
        ))

    # =========================================================================
    # Alerts
    # =========================================================================

    def check_and_alert(
        self,
        device_id: str,
        limits: CostLimits,
        timezone_name: Optional[str] = None,
    ) -> List[CostAlert]:
        """
        Raise threshold alerts after a successful charge.

        At most one unresolved alert exists per device, alert type and
        period; repeated crossings in the same period are no-ops.

        Returns:
            Alerts created by this call.
        """
        if not limits.tracking_enabled:
            return []

        local_now = self._local_now(timezone_name)
        daily, monthly = self._period_totals(device_id, local_now)
        checks = [
            (AlertType.DAILY_THRESHOLD, local_now.strftime("%Y-%m-%d"), daily, limits.daily_usd),
            (AlertType.MONTHLY_THRESHOLD, local_now.strftime("%Y-%m"), monthly, limits.monthly_usd),
        ]

        created = []
        for alert_type, period, spent, limit in checks:
            if limit <= 0 or spent < limit * limits.alert_threshold:
                continue
            alert = self.storage.insert_alert_if_absent(CostAlert(
                device_id=device_id,
                alert_type=alert_type,
                period=period,
                current_cost=spent,
                limit_amount=limit,
            ))
            if alert is not None:
                logger.info(
                    "Cost alert for %s: %s %s at $%.6f of $%.6f",
                    device_id, alert_type.value, period, spent, limit,
                )
                created.append(alert)
        return created

    def resolve_alert(self, alert_id: str) -> bool:
        """Mark an alert resolved. Returns False if unknown or already resolved."""
        return self.storage.resolve_alert(alert_id, self._clock())

    def unresolved_alerts(self, device_id: Optional[str] = None) -> List[CostAlert]:
        return self.storage.list_alerts(device_id=device_id, unresolved_only=True)

    def alert_history(self, device_id: str, days: int = 30) -> List[CostAlert]:
        since = self._clock() - timedelta(days=days)
        return self.storage.list_alerts(device_id=device_id, since=since)

    # =========================================================================
    # Reporting
    # =========================================================================

    def cost_analytics(self, device_id: str, days: int = 30) -> dict:
        """
        Spend summary for a device.

        Returns:
            Dict with ``summary``, ``current`` (today and this month),
            ``by_provider`` and ``daily_trend`` sections.
        """
        now = self._clock()
        local_now = self._local_now()
        zone = local_now.tzinfo
        records = [
            r for r in self.storage.list_usage(device_id=device_id, since=now - timedelta(days=days))
            if r.success
        ]

        total_cost = sum(r.cost_usd for r in records)
        total_requests = len(records)

        day_start = self._day_start(local_now)
        month_start = self._month_start(local_now)
        today = [r for r in records if r.created_at >= day_start]
        this_month = self.storage.list_usage(device_id=device_id, since=month_start)
        this_month = [r for r in this_month if r.success]

        by_provider: dict[tuple[str, str], dict] = {}
        daily: dict[str, dict] = defaultdict(lambda: {"cost": 0.0, "requests": 0, "tokens": 0})
        for r in records:
            key = (r.provider, r.model)
            entry = by_provider.setdefault(key, {
                "provider": r.provider,
                "model": r.model,
                "cost": 0.0,
                "requests": 0,
                "tokens": 0,
            })
            entry["cost"] += r.cost_usd
            entry["requests"] += 1
            entry["tokens"] += r.total_tokens

            day = r.created_at.astimezone(zone).strftime("%Y-%m-%d")
            daily[day]["cost"] += r.cost_usd
            daily[day]["requests"] += 1
            daily[day]["tokens"] += r.total_tokens

        return {
            "summary": {
                "total_cost": total_cost,
                "total_requests": total_requests,
                "total_tokens": sum(r.total_tokens for r in records),
                "average_cost_per_request": total_cost / total_requests if total_requests else 0.0,
                "period": f"{days} days",
            },
            "current": {
                "today_cost": sum(r.cost_usd for r in today),
                "today_requests": len(today),
                "monthly_cost": sum(r.cost_usd for r in this_month),
                "monthly_requests": len(this_month),
            },
            "by_provider": sorted(by_provider.values(), key=lambda e: e["cost"], reverse=True),
            "daily_trend": [{"date": day, **stats} for day, stats in sorted(daily.items())],
        }
