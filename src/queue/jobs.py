"""The scheduled retention tick, as a plain function RQ can import."""
from __future__ import annotations

from src.core.config import get_settings
from src.services.components import build_retention_engine
from src.utils.logger import configure_logging, logger


def run_retention_tick() -> dict[str, object]:
    """Build fresh components, run one tick, and return a JSON-friendly summary.

    Never raises: a broken tick is logged so the recurring job keeps firing.
    """

    try:
        engine = build_retention_engine(get_settings())
        result = engine.run()
    except Exception:
        logger.exception("Retention tick could not run")
        return {"ok": False, "stages": []}
    return {
        "ok": result.ok,
        "ran_at": result.ran_at.isoformat(),
        "stages": [
            {"stage": outcome.stage, "status": outcome.status, "detail": outcome.detail}
            for outcome in result.outcomes
        ],
    }


if __name__ == "__main__":  # pragma: no cover - manual execution
    configure_logging()
    print(run_retention_tick())
