"""Internal API routers — the /execute trigger surface.

No business logic, no DB access. Delegates to the scheduler and the
strategy parser.
"""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Body, Header, Query
from fastapi.responses import JSONResponse

from pinetrade.strategy.parser import parse_strategy

logger = logging.getLogger("pinetrade.api")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_scheduler = None        # Set via configure_routers()
_scheduler_token: Optional[str] = None  # Set via configure_routers()
_last_report: Optional[dict] = None      # Updated after every pass


def configure_routers(scheduler, scheduler_token: Optional[str]) -> None:
    """Inject dependencies from the application startup.

    Args:
        scheduler: A ``BatchScheduler`` instance (or duck-type for tests).
        scheduler_token: Shared secret the trusted cron caller presents in
            ``X-Scheduler-Token`` for ``evaluate-all``.
    """
    global _scheduler, _scheduler_token  # noqa: PLW0603
    _scheduler = scheduler
    _scheduler_token = scheduler_token


def record_report(report: dict) -> None:
    """Remember the most recent pass report for ``GET /status``."""
    global _last_report  # noqa: PLW0603
    _last_report = report


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": message})


def _token_ok(presented: Optional[str]) -> bool:
    if not _scheduler_token or not presented:
        return False
    return hmac.compare_digest(presented, _scheduler_token)


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get("/status")
async def status():
    """Outcome counts of the last completed pass."""
    if _last_report is None:
        return {"last_pass": None}
    return {
        "last_pass": {
            "message": _last_report.get("message"),
            "startedAt": _last_report.get("startedAt"),
            "finishedAt": _last_report.get("finishedAt"),
            "counts": _last_report.get("counts"),
        }
    }


@router.post("/execute")
async def execute(
    action: str = Query("evaluate"),
    body: Optional[dict] = Body(None),
    x_scheduler_token: Optional[str] = Header(None),
    x_user_id: Optional[str] = Header(None),
):
    """Dispatch on ``action``: ``evaluate-all``, ``evaluate-script``, ``parse``."""
    try:
        if action == "evaluate-all":
            if not _token_ok(x_scheduler_token):
                return _error(401, "Scheduler token required")
            if _scheduler is None:
                return _error(503, "Scheduler not configured")
            report = (await _scheduler.run_pass()).to_dict()
            record_report(report)
            return report

        if action == "evaluate-script":
            if not x_user_id:
                return _error(401, "Authentication required")
            if _scheduler is None:
                return _error(503, "Scheduler not configured")
            body = body or {}
            script_id = body.get("scriptId")
            if not script_id:
                return _error(400, "scriptId is required")
            timeframe = body.get("timeframe") or "1h"
            try:
                result = await _scheduler.evaluate_strategy(
                    x_user_id, script_id, timeframe,
                )
            except LookupError:
                return _error(404, "Script not found")
            result["dryRun"] = bool(body.get("dryRun", True))
            return result

        if action == "parse":
            script_content = (body or {}).get("scriptContent")
            if not script_content:
                return _error(400, "scriptContent is required")
            return {"strategy": parse_strategy(script_content).to_dict()}

        return _error(400, "Unknown action")

    except Exception as exc:
        logger.exception("Execute action '%s' failed", action)
        return _error(500, str(exc) or type(exc).__name__)
