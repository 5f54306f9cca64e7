"""Cycle orchestration: report computation, persistence, caching and scheduling."""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timezone
from threading import RLock
from typing import Any, Callable, Optional, Sequence

from fleet_optimizer.domain.constraints import validate_horizon, validate_rule_fields
from fleet_optimizer.domain.models import (
    RECOMMENDATION_STATUSES,
    ComputeContext,
    OptimizationContext,
    OptimizationReport,
    OptimizationRule,
    RecommendationSuggestion,
    StoredRecommendation,
)
from fleet_optimizer.repository.data_repository import DataRepository
from fleet_optimizer.services.context_service import ContextAssembler
from fleet_optimizer.services.dashboard_service import build_predictive_overview
from fleet_optimizer.services.forecast_service import compute_demand_forecast
from fleet_optimizer.services.heatmap_service import build_heatmap_data, compute_balance_kpis
from fleet_optimizer.services.maintenance_service import build_maintenance_outlook
from fleet_optimizer.services.matching_service import generate_operational_recommendations
from fleet_optimizer.services.pricing_service import build_pricing_insights
from fleet_optimizer.services.route_service import aggregate_route_load
from fleet_optimizer.services.simulation_service import (
    RuleOverride,
    apply_rule_overrides,
    build_impact_simulations,
)
from fleet_optimizer.utils.clock import utc_today
from fleet_optimizer.utils.config import Settings, get_settings
from fleet_optimizer.utils.logger import get_logger


logger = get_logger(__name__)

ComputeCallback = Callable[[ComputeContext], None]


class OptimizationError(Exception):
    """Base exception for optimization workflow failures."""


class OptimizationValidationError(OptimizationError):
    """Raised when a horizon, rule or status input is invalid."""


class RecommendationNotFoundError(OptimizationError):
    """Raised when a stored recommendation id does not exist."""


class ResourceOptimizationService:
    """Runs the predictive pipeline and owns the latest-report slot.

    ``run_cycle`` calls are serialized. A scheduler tick that finds another
    cycle in flight is skipped instead of queued.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        context_assembler: Optional[ContextAssembler] = None,
        today_provider: Optional[Callable[[], date]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._assembler = context_assembler or ContextAssembler(
            repository=self._repository,
            settings=self._settings,
        )
        self._today = today_provider or utc_today

        self._report_lock = RLock()
        self._latest_report: Optional[OptimizationReport] = None

        self._cycle_lock = threading.Lock()

        self._scheduler_lock = RLock()
        self._scheduler_thread: Optional[threading.Thread] = None
        self._scheduler_stop: Optional[threading.Event] = None

    # --- Pipeline --------------------------------------------------------

    def _resolve_horizon(self, horizon_days: Optional[int]) -> int:
        horizon = self._settings.default_horizon_days if horizon_days is None else horizon_days
        try:
            validate_horizon(horizon)
        except ValueError as exc:
            raise OptimizationValidationError(str(exc)) from exc
        return horizon

    def _analyse(
        self,
        raw: OptimizationContext,
        horizon_days: int,
    ) -> tuple[OptimizationReport, ComputeContext]:
        today = self._today()
        demand_forecast = compute_demand_forecast(
            raw.trends,
            horizon_days,
            raw.search_stats,
            today=today,
        )
        pricing_insights = build_pricing_insights(aggregate_route_load(raw.load_factors))
        maintenance = build_maintenance_outlook(
            raw.vehicles,
            raw.incidents,
            raw.incident_vehicle_ids,
            raw.load_factors,
            today=today,
        )
        report = OptimizationReport(
            generated_at=datetime.now(timezone.utc),
            horizon_days=horizon_days,
            demand_forecast=demand_forecast,
            pricing_insights=pricing_insights,
            maintenance=maintenance,
            impact_simulations=build_impact_simulations(pricing_insights, maintenance),
            predictive_dashboard=build_predictive_overview(
                raw.snapshot,
                pricing_insights,
                maintenance,
            ),
        )
        compute_ctx = ComputeContext(
            load_factors=raw.load_factors,
            maintenance=maintenance,
            demand_forecast=demand_forecast,
            snapshot=raw.snapshot,
        )
        return report, compute_ctx

    def build_context(self, horizon_days: Optional[int] = None) -> ComputeContext:
        """Assemble and derive the shared inputs of heatmap, KPI and matching."""
        horizon = self._resolve_horizon(horizon_days)
        _, compute_ctx = self._analyse(self._assembler.assemble(horizon), horizon)
        return compute_ctx

    def compute_report(
        self,
        horizon_days: Optional[int] = None,
        on_compute: Optional[ComputeCallback] = None,
    ) -> OptimizationReport:
        """Compute a fresh report without side effects of its own.

        Store read failures propagate. ``on_compute`` receives the derived
        context once the report is built.
        """
        horizon = self._resolve_horizon(horizon_days)
        report, compute_ctx = self._analyse(self._assembler.assemble(horizon), horizon)
        if on_compute is not None:
            on_compute(compute_ctx)
        logger.info(
            "Report computed | horizon=%s | pricing_insights=%s | stress_index=%s",
            horizon,
            len(report.pricing_insights),
            report.predictive_dashboard.stress_index,
        )
        return report

    # --- Cycle -----------------------------------------------------------

    def _persist_suggestions(self, suggestions: Sequence[RecommendationSuggestion]) -> int:
        if not suggestions:
            return 0
        saved = 0
        with ThreadPoolExecutor(
            max_workers=min(len(suggestions), self._settings.reader_max_workers),
            thread_name_prefix="recommendation-write",
        ) as pool:
            futures = [
                (suggestion, pool.submit(self._repository.create_optimization_recommendation, suggestion))
                for suggestion in suggestions
            ]
            for suggestion, future in futures:
                try:
                    future.result()
                    saved += 1
                except Exception:
                    logger.exception(
                        "Recommendation persistence failed | route_from=%s | route_to=%s",
                        suggestion.route_from,
                        suggestion.route_to,
                    )
        return saved

    def _persist_recommendations(self, compute_ctx: ComputeContext) -> None:
        try:
            rules = self._repository.list_optimization_rules()
        except Exception:
            logger.exception("Rule lookup failed; recommendations not persisted")
            return
        suggestions = generate_operational_recommendations(compute_ctx, rules)
        saved = self._persist_suggestions(suggestions)
        logger.info(
            "Recommendations persisted | suggested=%s | saved=%s",
            len(suggestions),
            saved,
        )

    def _run_cycle_locked(self, horizon_days: Optional[int]) -> OptimizationReport:
        report = self.compute_report(horizon_days, on_compute=self._persist_recommendations)
        with self._report_lock:
            self._latest_report = report
        return report

    def run_cycle(self, horizon_days: Optional[int] = None) -> OptimizationReport:
        """Compute, persist suggestions and cache the report as the latest."""
        with self._cycle_lock:
            return self._run_cycle_locked(horizon_days)

    def get_latest_report(self) -> Optional[OptimizationReport]:
        with self._report_lock:
            return self._latest_report

    # --- Scheduler -------------------------------------------------------

    @property
    def scheduler_running(self) -> bool:
        with self._scheduler_lock:
            return self._scheduler_thread is not None and self._scheduler_thread.is_alive()

    def _scheduled_tick(self, horizon_days: Optional[int]) -> None:
        if not self._cycle_lock.acquire(blocking=False):
            logger.warning("Scheduled cycle skipped | reason=cycle_in_flight")
            return
        try:
            self._run_cycle_locked(horizon_days)
        except Exception:
            logger.exception("Scheduled optimization cycle failed")
        finally:
            self._cycle_lock.release()

    def start_scheduler(
        self,
        interval_seconds: Optional[float] = None,
        horizon_days: Optional[int] = None,
    ) -> bool:
        """Start the periodic cycle; returns False when one is already active."""
        interval = (
            self._settings.scheduler_interval_seconds
            if interval_seconds is None
            else interval_seconds
        )
        if interval <= 0:
            raise OptimizationValidationError("interval_seconds must be > 0")
        if horizon_days is not None:
            self._resolve_horizon(horizon_days)

        with self._scheduler_lock:
            if self._scheduler_thread is not None and self._scheduler_thread.is_alive():
                return False
            stop_event = threading.Event()

            def _loop() -> None:
                # Ticks follow a fixed monotonic grid; slots missed by a
                # long cycle are dropped, not replayed.
                next_run = time.monotonic() + interval
                while not stop_event.wait(max(0.0, next_run - time.monotonic())):
                    self._scheduled_tick(horizon_days)
                    next_run += interval
                    now = time.monotonic()
                    if next_run <= now:
                        missed = int((now - next_run) // interval) + 1
                        next_run += missed * interval

            thread = threading.Thread(
                target=_loop,
                name="optimization-scheduler",
                daemon=True,
            )
            self._scheduler_stop = stop_event
            self._scheduler_thread = thread
            thread.start()
        logger.info(
            "Optimization scheduler started | interval_seconds=%s | horizon=%s",
            interval,
            horizon_days,
        )
        return True

    def stop_scheduler(self, timeout: float = 5.0) -> bool:
        with self._scheduler_lock:
            thread = self._scheduler_thread
            stop_event = self._scheduler_stop
            self._scheduler_thread = None
            self._scheduler_stop = None
        if thread is None or stop_event is None:
            return False
        stop_event.set()
        if thread is not threading.current_thread():
            thread.join(timeout)
        logger.info("Optimization scheduler stopped")
        return True

    # --- Exploration and rule management ---------------------------------

    def list_recommendation_view(
        self,
        horizon_days: Optional[int] = None,
        statuses: Optional[Sequence[str]] = None,
        route: Optional[str] = None,
    ) -> dict[str, Any]:
        horizon = self._resolve_horizon(horizon_days)
        compute_ctx = self.build_context(horizon)
        rules = self._repository.list_optimization_rules()
        stored = self._repository.list_optimization_recommendations(statuses, route)
        return {
            "horizon_days": horizon,
            "heatmap": [entry.to_dict() for entry in build_heatmap_data(compute_ctx)],
            "kpis": compute_balance_kpis(compute_ctx).to_dict(),
            "demand_forecast": [entry.to_dict() for entry in compute_ctx.demand_forecast],
            "load_factors": [factor.to_dict() for factor in compute_ctx.load_factors],
            "rules": [rule.to_dict() for rule in rules],
            "suggestions": [
                suggestion.to_dict()
                for suggestion in generate_operational_recommendations(compute_ctx, rules)
            ],
            "stored_recommendations": [item.to_dict() for item in stored],
        }

    def simulate(
        self,
        horizon_days: Optional[int] = None,
        overrides: Optional[Sequence[RuleOverride]] = None,
    ) -> dict[str, Any]:
        """Run matching against overridden rules; nothing is persisted."""
        horizon = self._resolve_horizon(horizon_days)
        for override in overrides or []:
            self._validate_override(override)
        compute_ctx = self.build_context(horizon)
        effective_rules = apply_rule_overrides(
            self._repository.list_optimization_rules(),
            overrides,
        )
        suggestions = generate_operational_recommendations(compute_ctx, effective_rules)
        return {
            "horizon_days": horizon,
            "suggestions": [suggestion.to_dict() for suggestion in suggestions],
            "heatmap": [entry.to_dict() for entry in build_heatmap_data(compute_ctx)],
            "kpis": compute_balance_kpis(compute_ctx).to_dict(),
            "demand_forecast": [entry.to_dict() for entry in compute_ctx.demand_forecast],
            "load_factors": [factor.to_dict() for factor in compute_ctx.load_factors],
            "rules": [rule.to_dict() for rule in effective_rules],
        }

    @staticmethod
    def _validate_override(override: RuleOverride) -> None:
        try:
            validate_rule_fields(
                name=override.name,
                route_pattern=override.route_pattern,
                threshold=override.threshold,
                min_rest_hours=override.min_rest_hours,
                service_window=override.service_window,
            )
        except ValueError as exc:
            raise OptimizationValidationError(str(exc)) from exc

    def save_rules(self, rules: Sequence[RuleOverride]) -> list[OptimizationRule]:
        """Update rules by id, creating any that carry no id or an unknown one."""
        for rule in rules:
            if rule.name is None:
                raise OptimizationValidationError("rule name is required")
            self._validate_override(rule)

        saved: list[OptimizationRule] = []
        for rule in rules:
            if rule.rule_id:
                updated = self._repository.update_optimization_rule(rule.rule_id, rule.changes())
                if updated is not None:
                    saved.append(updated)
                    continue
            saved.append(self._repository.create_optimization_rule(**rule.changes()))
        logger.info("Optimization rules saved | count=%s", len(saved))
        return saved

    def update_recommendation_status(
        self,
        recommendation_id: str,
        status: str,
        priority: Optional[int] = None,
        comment: Optional[str] = None,
    ) -> StoredRecommendation:
        if status not in RECOMMENDATION_STATUSES:
            raise OptimizationValidationError(
                f"status must be one of {', '.join(RECOMMENDATION_STATUSES)}"
            )
        if priority is not None and priority < 0:
            raise OptimizationValidationError("priority must be >= 0")
        updated = self._repository.update_optimization_recommendation(
            recommendation_id,
            status=status,
            priority=priority,
            metadata_patch={"comment": comment} if comment else None,
        )
        if updated is None:
            raise RecommendationNotFoundError(f"Recommendation {recommendation_id} not found")
        logger.info(
            "Recommendation status updated | recommendation_id=%s | status=%s",
            recommendation_id,
            status,
        )
        return updated
