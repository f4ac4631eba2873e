"""
main.py — CLI entry point for the keyword gap & GSC analyzer.

Usage:
  python main.py --compare mine.csv --competitor Rival=rival.csv   Keyword gap comparison
  python main.py --gsc export.xlsx                                 GSC period analysis
  python main.py --pertinence kw.csv --industry "arredamento"      Offline pertinence scoring
  python main.py --score-ads ads.json                              7C ad scoring
  python main.py --score-landing https://example.com/offerta       10M landing page scoring
  python main.py --init-db                                         Initialise the database only
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from datetime import datetime
from pathlib import Path

import yaml
from dotenv import load_dotenv

from ingest.columns import ParseError

load_dotenv()

# ── Logging setup ─────────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler("analyzer.log", encoding="utf-8"),
    ],
)
logger = logging.getLogger("main")


# ── Config loader ─────────────────────────────────────────────────────────────

def load_config(path: str = "config.yaml") -> dict:
    if not os.path.exists(path):
        logger.info("No %s found, using defaults", path)
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _read_text(path: str) -> str:
    return Path(path).read_text(encoding="utf-8")


def _output_dir(settings: dict) -> Path:
    out = Path(settings.get("output_dir", "reports"))
    out.mkdir(parents=True, exist_ok=True)
    return out


def _stamp() -> str:
    return datetime.now().strftime("%Y%m%d_%H%M%S")


def _parse_competitors(values: list[str], primary_name: str) -> dict[str, str]:
    """['Rival=rival.csv', ...] -> {'Rival': 'rival.csv', ...}"""
    competitors = {}
    for value in values or []:
        name, sep, path = value.partition("=")
        if not sep or not name.strip() or not path.strip():
            raise SystemExit(f"--competitor expects NAME=FILE, got '{value}'")
        if name.strip() == primary_name:
            raise SystemExit(f"--competitor name '{primary_name}' is already the primary site name")
        competitors[name.strip()] = path.strip()
    return competitors


# ── Actions ───────────────────────────────────────────────────────────────────

async def run_compare(primary_path: str, competitor_values: list[str], config: dict) -> None:
    from analysis.compare import Status, filter_status, run_keyword_comparison
    from export.csv_export import comparison_rows, write_csv
    from export.xlsx_report import write_full_report
    from storage.results import ResultStore

    settings     = config.get("settings", {})
    primary_name = settings.get("primary_site_name", "Mio Sito")
    chunk_size   = settings.get("chunk_size", 500)

    files = {primary_name: _read_text(primary_path)}
    for name, path in _parse_competitors(competitor_values, primary_name).items():
        files[name] = _read_text(path)

    def on_chunk(done: int, total: int, chunk: list) -> None:
        logger.debug("Reconciled %d/%d keywords", done, total)

    results, competitor_names = await run_keyword_comparison(
        files, primary_name=primary_name, chunk_size=chunk_size, on_chunk=on_chunk,
    )

    out = _output_dir(settings)
    stamp = _stamp()

    store = ResultStore()
    for status in Status:
        data_id = store.publish(status.value, [r.to_dict() for r in filter_status(results, status)])
        logger.info("Section %s published as %s", status.value, data_id)
    store.write_json(out / f"sezioni_keyword_{stamp}.json")

    headers, rows = comparison_rows(results, competitor_names)
    write_csv(out / f"confronto_keyword_{stamp}.csv", headers, rows)
    write_full_report(out / f"report_completo_{stamp}.xlsx", results, competitor_names, primary_name)


async def run_gsc(workbook_path: str, config: dict) -> None:
    from analysis.gsc import analyze_workbook, write_gsc_report

    settings = config.get("settings", {})

    def on_progress(report_type, percent: float) -> None:
        logger.info("GSC %s analysed (%.0f%%)", report_type.value, percent)

    report = await analyze_workbook(Path(workbook_path).read_bytes(), on_progress=on_progress)
    for line in report.filters:
        logger.info("Filter: %s", line)
    for report_type, analysis in report.analyzed.items():
        if analysis is not None:
            print(f"\n[{report_type.value}] {analysis.summary_text}")
    print()

    write_gsc_report(report, _output_dir(settings) / f"gsc_{_stamp()}")


async def run_pertinence(args: argparse.Namespace, config: dict) -> None:
    from analysis.enrichment import enrich_results
    from analysis.pertinence import analyze_pertinence, pertinence_rows
    from export.csv_export import write_csv
    from ingest.delimited import parse_pertinence_csv
    from storage.handoff import import_core_keywords

    settings = config.get("settings", {})

    industry_keywords = args.industry_keywords or ""
    if args.import_core:
        core = import_core_keywords()
        if core:
            industry_keywords = ", ".join(filter(None, [industry_keywords, *core]))
        else:
            logger.warning("No core keywords stored by a previous comparison")

    records = parse_pertinence_csv(_read_text(args.pertinence))
    results = await analyze_pertinence(
        records,
        args.industry or "",
        industry_keywords,
        chunk_size=settings.get("pertinence_chunk_size", 50),
    )

    if args.enrich:
        login    = os.getenv("DATAFORSEO_LOGIN", "")
        password = os.getenv("DATAFORSEO_PASSWORD", "")
        results = await enrich_results(
            results, login, password,
            concurrency=settings.get("enrichment_concurrency", 3),
        )

    headers, rows = pertinence_rows(results)
    write_csv(_output_dir(settings) / f"pertinenza_keyword_{_stamp()}.csv", headers, rows)


async def run_score_ads(ads_path: str, config: dict) -> None:
    from analysis.ai_summary import AD_ANGLE_7C, MODEL, score_ads
    from export.csv_export import write_csv

    settings = config.get("settings", {})
    with open(ads_path, "r", encoding="utf-8") as f:
        ads = json.load(f)
    if not isinstance(ads, list):
        raise SystemExit(f"{ads_path} must contain a JSON list of ads")

    records = await score_ads(
        ads,
        model=settings.get("ai_model", MODEL),
        concurrency=settings.get("ad_concurrency", 3),
    )

    headers = [
        "Ad Text", "Ad Title",
        *[f"7C_{name}" for name in AD_ANGLE_7C.score_fields],
        f"7C_{AD_ANGLE_7C.total_field}", "7C_evaluation", "7C_detailedAnalysis",
    ]
    rows = [
        {**r, "Ad Text": r.get("adText", ""), "Ad Title": r.get("adTitle", "")}
        for r in records
    ]
    write_csv(_output_dir(settings) / f"analisi_7c_{_stamp()}.csv", headers, rows)


def run_score_landing(url: str, config: dict) -> None:
    import requests

    from analysis.ai_summary import LANDING_PAGE_10M, MODEL, failure_record, score_landing_page
    from scraper.extractor import extract_landing_facts, fetch_html

    settings = config.get("settings", {})
    try:
        html = fetch_html(url, timeout=settings.get("request_timeout", 30))
    except requests.RequestException as exc:
        logger.error("Could not fetch %s: %s", url, exc)
        facts = {}
        score = failure_record(LANDING_PAGE_10M, f"Impossibile scaricare la pagina: {exc}")
    else:
        facts = extract_landing_facts(html, url)
        score = score_landing_page(
            url, facts, context=config.get("landing_context", {}),
            model=settings.get("ai_model", MODEL),
        )

    out_path = _output_dir(settings) / f"analisi_10m_{_stamp()}.json"
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump({"url": url, "facts": facts, "score": score}, f, indent=2, ensure_ascii=False)
    logger.info("Landing page report written to %s", out_path)

    print(f"\n  {url}")
    print(f"  Overall score:  {score['overallScore']}/100  ({score['evaluation']})")
    print(f"  Conversion:     {score['conversionProbability']}\n")


# ── CLI ───────────────────────────────────────────────────────────────────────

def main():
    parser = argparse.ArgumentParser(
        description="Keyword gap & GSC analyzer — competitor CSV comparison, GSC period diff, AI scoring"
    )
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument(
        "--compare",
        metavar="PRIMARY_CSV",
        help="Compare the primary site's keyword CSV against --competitor files",
    )
    group.add_argument(
        "--gsc",
        metavar="WORKBOOK",
        help="Analyse a Google Search Console comparison export (.xlsx/.ods)",
    )
    group.add_argument(
        "--pertinence",
        metavar="CSV",
        help="Score keyword pertinence and SEO priority for an industry",
    )
    group.add_argument(
        "--score-ads",
        metavar="ADS_JSON",
        help="Score ads (JSON list of {adText, adTitle}) with the 7C framework",
    )
    group.add_argument(
        "--score-landing",
        metavar="URL",
        help="Fetch a landing page and score it with the 10M framework",
    )
    group.add_argument(
        "--init-db",
        action="store_true",
        help="Initialise the database only",
    )

    parser.add_argument(
        "--competitor",
        action="append",
        metavar="NAME=CSV",
        help="Competitor keyword CSV (repeatable, used with --compare)",
    )
    parser.add_argument("--industry", help="Industry / sector description (with --pertinence)")
    parser.add_argument("--industry-keywords", help="Comma-separated industry keywords (with --pertinence)")
    parser.add_argument("--enrich", action="store_true", help="Add DataForSEO metrics (with --pertinence)")
    parser.add_argument(
        "--import-core",
        action="store_true",
        help="Add the core keywords saved by the last comparison (with --pertinence)",
    )
    parser.add_argument("--config", default="config.yaml", help="Path to config.yaml")

    args = parser.parse_args()
    config = load_config(args.config)

    try:
        if args.compare:
            asyncio.run(run_compare(args.compare, args.competitor, config))

        elif args.gsc:
            asyncio.run(run_gsc(args.gsc, config))

        elif args.pertinence:
            asyncio.run(run_pertinence(args, config))

        elif args.score_ads:
            asyncio.run(run_score_ads(args.score_ads, config))

        elif args.score_landing:
            run_score_landing(args.score_landing, config)

        elif args.init_db:
            from storage.db import init_db
            init_db()
            logger.info("Database initialised.")

    except ParseError as exc:
        logger.error("Could not parse input: %s", exc)
        sys.exit(1)
    except ValueError as exc:
        logger.error("%s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
