"""researcher - autonomous web research

Simple CLI for running research queries.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from researcher.config import load_settings
from researcher.deps import create_orchestrator
from researcher.errors import ResearchError
from researcher.models.schemas import ReportType, Tone
from researcher.services.logger import configure_logging


async def run_research(
    query: str,
    report_type: str | None = None,
    tone: str | None = None,
    browser: bool = True,
    export_path: str | None = None,
) -> int:
    """Run research on the given query, streaming progress to stdout."""
    settings = load_settings()
    configure_logging(settings)

    print(f"Research query: {query}")
    print("-" * 50)

    try:
        orchestrator = create_orchestrator(
            settings,
            query,
            report_type=report_type,
            tone=tone,
            browser=browser,
        )
    except ResearchError as e:
        print(f"[!] Configuration error: {e}")
        return 2

    status = 0
    async for update in orchestrator.stream():
        if update.type == "progress":
            print(f"\n[~] {update.message} ({update.progress}%)")

        elif update.type == "data":
            data = update.data or {}
            if "chunk" in data:
                print(data["chunk"], end="", flush=True)
            elif "subtopics" in data:
                for i, topic in enumerate(data["subtopics"], 1):
                    print(f"  {i}. {topic[:80]}")
            elif update.message:
                details = ", ".join(f"{k}={v}" for k, v in data.items())
                print(f"  [+] {update.message}: {details}")

        elif update.type == "complete":
            data = update.data or {}
            print(f"\n\n[*] Research Complete!")
            print(f"   Runtime: {data.get('runtime_ms')}ms")
            print(f"   Tokens: {data.get('tokens_used')}")
            print(f"   Cost: ${data.get('costs', {}).get('total', 0.0):.4f}")
            print(f"   Sources: {len(data.get('sources', []))}")
            print(f"\n{'='*50}")
            print("REPORT:")
            print(f"{'='*50}")
            print(data.get("report", ""))

        elif update.type == "error":
            print(f"\n[!] Error: {update.message or 'Unknown error'}")
            status = 1

    if export_path:
        Path(export_path).write_text(orchestrator.export_research(), encoding="utf-8")
        print(f"\n[*] Research exported to {export_path}")
    return status


def main():
    parser = argparse.ArgumentParser(description="researcher - autonomous web research")
    parser.add_argument("--query", "-q", required=True, help="Research query")
    parser.add_argument(
        "--report-type",
        "-r",
        choices=[t.value for t in ReportType],
        help="Report type (default: from config)",
    )
    parser.add_argument("--tone", "-t", choices=[t.value for t in Tone], help="Writing tone")
    parser.add_argument("--no-browser", action="store_true", help="Disable the headless browser acquirer")
    parser.add_argument("--export", help="Write the run's working memory and stats as JSON")

    args = parser.parse_args()

    sys.exit(
        asyncio.run(
            run_research(
                args.query,
                report_type=args.report_type,
                tone=args.tone,
                browser=not args.no_browser,
                export_path=args.export,
            )
        )
    )


if __name__ == "__main__":
    main()
