from __future__ import annotations

import argparse
import asyncio
import json
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Dict, List, Optional

from adaptation_engine import AdaptationEngine
from errors import PlanningError
from insights import InsightCache, InsightGenerator, RateLimiter
from models import AdaptationResult, PlanGenerationResult
from models_pydantic import StudyPlanPydantic, TaskPydantic, to_record
from plan_generation import generate_initial_plan
from store import InMemoryStore

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    "start_date": None,  # today
    "seed": 42,
    "max_daily_hours": 4.0,
    "max_difficulty_jump": 1.0,
    "min_reviews_per_topic": 2,
    "min_review_gap_days": 2,
    "pass_timeout": 30.0,
    "run_timeout": 120.0,
    "use_llm_insights": False,
    "llm_model": "gemini-2.5-flash-lite",
    "llm_temperature": 0.2,
    "llm_max_calls_per_minute": 10,
}


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Exam study-plan generator and adaptation engine")
    parser.add_argument("--config", type=str, help="Path to config JSON")
    parser.add_argument("--state", type=str, default="state.json", help="JSON state file (topics, learners, tasks, ...)")
    parser.add_argument("--output-dir", dest="output_dir", type=str, default="Plans_Output", help="Directory to write reports")
    parser.add_argument("--verbose", action="store_true", help="Log at DEBUG level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    plan_parser = subparsers.add_parser("plan", help="Generate the initial plan for a learner")
    plan_parser.add_argument("learner_id", type=str)
    plan_parser.add_argument("--start-date", dest="start_date", type=str, help="Start date YYYY-MM-DD")
    plan_parser.add_argument("--seed", type=int, help="Seed for task-type draws")
    plan_parser.add_argument("--max-daily-hours", dest="max_daily_hours", type=float, help="Workload limit used by validation")
    plan_parser.add_argument("--max-difficulty-jump", dest="max_difficulty_jump", type=float, help="Largest allowed day-to-day difficulty change")
    plan_parser.add_argument("--min-reviews", dest="min_reviews_per_topic", type=int, help="Reviews expected per topic")
    plan_parser.add_argument("--min-review-gap", dest="min_review_gap_days", type=int, help="Minimum days between reviews")

    adapt_parser = subparsers.add_parser("adapt", help="Run the adaptation passes for a learner")
    adapt_parser.add_argument("learner_id", type=str)
    adapt_parser.add_argument("--now", type=str, help="Reference time YYYY-MM-DDTHH:MM (default: current time)")
    adapt_parser.add_argument("--pass-timeout", dest="pass_timeout", type=float, help="Seconds allowed per pass")
    adapt_parser.add_argument("--run-timeout", dest="run_timeout", type=float, help="Seconds allowed for the whole run")
    adapt_parser.add_argument("--insights", dest="use_llm_insights", action="store_true", help="Annotate the result with LLM insights")
    adapt_parser.add_argument("--no-insights", dest="use_llm_insights", action="store_false", help="Disable LLM insights")
    adapt_parser.set_defaults(use_llm_insights=None)
    adapt_parser.add_argument("--llm-model", dest="llm_model", type=str, help="Google Gemini model name")
    return parser.parse_args(argv)


def load_config(args: argparse.Namespace) -> Dict:
    config = dict(DEFAULT_CONFIG)

    if args.config:
        with open(args.config, "r", encoding="utf-8") as f:
            file_config = json.load(f)
            config.update(file_config)

    for key in DEFAULT_CONFIG:
        value = getattr(args, key, None)
        if value is not None:
            config[key] = value

    return config


def parse_date(date_str: str) -> date:
    return datetime.strptime(date_str, "%Y-%m-%d").date()


def build_plan_output(result: PlanGenerationResult) -> Dict:
    tasks_by_day: Dict[str, List[Dict]] = {}
    for task in sorted(result.tasks, key=lambda t: t.start_time):
        tasks_by_day.setdefault(task.start_time.date().isoformat(), []).append(to_record(TaskPydantic, task))

    schedule_entries = []
    for day in result.schedule:
        key = day.day.isoformat()
        schedule_entries.append(
            {
                "date": key,
                "minutes_planned": day.scheduled_minutes,
                "minutes_spare": day.available_minutes,
                "tasks": tasks_by_day.get(key, []),
            }
        )

    return {
        "plan": to_record(StudyPlanPydantic, result.plan),
        "schedule": schedule_entries,
        "validation": {"is_valid": result.validation.is_valid, "issues": result.validation.issues},
        "notes": result.notes,
    }


def build_adaptation_output(result: AdaptationResult) -> Dict:
    return {
        "learner_id": result.learner_id,
        "plan_id": result.plan_id,
        "summary": result.summary,
        "actions": [
            {
                "action_type": a.action_type.value,
                "description": a.description,
                "affected_task_ids": a.affected_task_ids,
                "metadata": a.metadata,
            }
            for a in result.actions
        ],
        "passes": [o.__dict__ for o in result.pass_outcomes],
        "insights": result.insights,
    }


def write_report(path: Path, payload: Dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, default=str)
    logger.info("Wrote report to %s", path)


async def run_plan(store: InMemoryStore, learner_id: str, config: Dict) -> PlanGenerationResult:
    start = parse_date(config["start_date"]) if config.get("start_date") else None
    return await generate_initial_plan(
        store,
        learner_id,
        start_date=start,
        seed=config["seed"],
        max_daily_minutes=int(config["max_daily_hours"] * 60),
        max_difficulty_jump=config["max_difficulty_jump"],
        min_reviews=config["min_reviews_per_topic"],
        min_review_gap_days=config["min_review_gap_days"],
    )


async def run_adapt(store: InMemoryStore, learner_id: str, config: Dict, now: Optional[datetime] = None) -> AdaptationResult:
    generator = None
    if config["use_llm_insights"]:
        generator = InsightGenerator(
            model_name=config["llm_model"],
            temperature=config["llm_temperature"],
            rate_limiter=RateLimiter(max_calls=config["llm_max_calls_per_minute"]),
            cache=InsightCache(),
        )
    engine = AdaptationEngine(
        store,
        pass_timeout=config["pass_timeout"],
        run_timeout=config["run_timeout"],
        insight_generator=generator,
    )
    return await engine.run(learner_id, now=now)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(levelname)s %(message)s")
    config = load_config(args)

    state_path = Path(args.state)
    output_dir = Path(args.output_dir)
    store = InMemoryStore.load(state_path)

    try:
        if args.command == "plan":
            result = asyncio.run(run_plan(store, args.learner_id, config))
            write_report(output_dir / f"{args.learner_id}_plan.json", build_plan_output(result))
        else:
            now = datetime.fromisoformat(args.now) if args.now else None
            result = asyncio.run(run_adapt(store, args.learner_id, config, now))
            write_report(output_dir / f"{args.learner_id}_adaptation.json", build_adaptation_output(result))
    except PlanningError as e:
        logger.error("%s", e)
        return 1

    store.save(state_path)
    logger.info("Saved state to %s", state_path)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
