#!/usr/bin/env python3
"""
Property ownership research - resolves owners and contacts for properties
waiting in HubSpot and writes the results back.

Usage:
    # Show how many properties wait for research
    uv run python -m workflows.research_properties --status

    # Research without writing anything to HubSpot
    uv run python -m workflows.research_properties --safe-mode --limit 5

    # Run a batch
    uv run python -m workflows.research_properties --limit 50

    # Research one address (always safe mode)
    uv run python -m workflows.research_properties --address "Vesterbrogade 10" --postal-code 1620 --city København
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import argparse
import asyncio
import signal
from typing import Optional

import httpx
from loguru import logger

from infra.hubspot import HubSpotClient
from lib.llm.analysis_service import OpenAIAnalysisService
from lib.llm.client import ChatClient
from lib.registries.cvr import CvrApiClient, ProffDirectory
from lib.registries.dawa import DawaClient
from lib.registries.ois import OisClient, OisOwnershipRegistry
from lib.web.mx_check import MxChecker
from lib.web.scraper import PageScraper
from lib.web.serper import SerperSearch
from lib.web.service import WebEvidence
from services.ownership.analysis import ContactAnalyzer
from services.ownership.config import OwnershipConfig
from services.ownership.email_hunt import EmailHunter
from services.ownership.matcher import RegistryMatcher
from services.ownership.models import OutreachStatus, PropertyRecord, ProgressEvent
from services.ownership.research import PropertyResearcher
from services.ownership.resolver import AddressResolver
from services.ownership.retry import RetryPolicy
from services.ownership.run_log import RunLogCapture
from services.ownership.workflow import OwnershipWorkflow, gate_recommendation, request_shutdown


def handle_signal(signum, frame):
    request_shutdown()


def build_workflow(client: httpx.AsyncClient, config: OwnershipConfig) -> OwnershipWorkflow:
    """Wire the real registry, web, model and HubSpot clients around one HTTP client."""
    retry = RetryPolicy.from_settings(config.retry)

    web = WebEvidence(SerperSearch(client, retry=retry), PageScraper(client, retry=retry))
    resolver = AddressResolver(DawaClient(client, retry=retry), web)
    ownership_registry = OisOwnershipRegistry(resolver, OisClient(client, retry=retry))
    matcher = RegistryMatcher(
        CvrApiClient(client, retry=retry), ProffDirectory(client, retry=retry), config.match,
    )

    chat = ChatClient.from_env(client, retry)
    if not chat.configured:
        logger.warning("No OpenAI/Azure credentials: owner assessment and ranking disabled")

    return OwnershipWorkflow(
        system_of_record=HubSpotClient(client, retry=retry),
        researcher=PropertyResearcher(ownership_registry, matcher, web, config),
        analyzer=ContactAnalyzer(OpenAIAnalysisService(chat) if chat.configured else None),
        hunter=EmailHunter(web, MxChecker(), max_pages=config.max_scrape_urls),
        config=config,
    )


def log_progress(event: ProgressEvent) -> None:
    pct = f"{event.percent:>3}%" if event.percent is not None else "    "
    logger.debug(f"[{event.property_id or '-'}] {pct} {event.phase}: {event.message}")


async def run_status(status: str, limit: int):
    config = OwnershipConfig.from_env()
    async with httpx.AsyncClient(follow_redirects=True) as client:
        hubspot = HubSpotClient(client, retry=RetryPolicy.from_settings(config.retry))
        properties = await hubspot.fetch_properties(status, limit)

    print("\n" + "=" * 60)
    print("PROPERTY RESEARCH STATUS")
    print("=" * 60)
    print(f"  Status:           {status}")
    print(f"  Waiting:          {len(properties)}{'+' if len(properties) >= limit else ''}")
    for prop in properties[:20]:
        print(f"    {prop.property_id:>12}: {prop.address[:40]:40} {prop.postal_code or ''} {prop.city or ''}")
    if len(properties) > 20:
        print(f"    ... and {len(properties) - 20} more")
    print("=" * 60 + "\n")


async def run_batch(status: str, limit: int, safe_mode: bool, log_file: Optional[str]):
    config = OwnershipConfig.from_env()
    if safe_mode:
        config.safe_mode = True

    with RunLogCapture(f"research {status} limit={limit}") as capture:
        async with httpx.AsyncClient(follow_redirects=True) as client:
            workflow = build_workflow(client, config)
            properties = await workflow.system_of_record.fetch_properties(status, limit)
            if not properties:
                logger.info(f"No properties with status {status}")
                return
            batch = await workflow.process_batch(properties, on_progress=log_progress)

    print("\n" + "=" * 60)
    print(f"RESEARCH COMPLETE{' (SAFE MODE)' if config.safe_mode else ''}")
    print("=" * 60)
    print(f"  {batch.summary()}")
    for outcome in batch.outcomes:
        best = outcome.best_contact
        print(
            f"  {outcome.property.property_id:>12}: {outcome.run.status.value:9} "
            f"{outcome.final_status.value if outcome.final_status else '-':30} "
            f"{'recommended' if outcome.gate_passed else 'pending':11} "
            f"{best.email if best else '-'}"
        )
    for property_id, reason in batch.skipped:
        print(f"  {property_id:>12}: skipped ({reason})")
    print("=" * 60 + "\n")

    if log_file:
        Path(log_file).write_text(capture.text, encoding="utf-8")
        logger.info(f"Run log written to {log_file}")


async def run_single(address: str, postal_code: Optional[str], city: Optional[str]):
    config = OwnershipConfig.from_env()
    config.safe_mode = True
    config.supported_cities_only = False
    prop = PropertyRecord(property_id="manual", address=address, postal_code=postal_code, city=city)

    async with httpx.AsyncClient(follow_redirects=True) as client:
        workflow = build_workflow(client, config)
        outcome = await workflow.process_property(prop, on_progress=log_progress)

    analysis = outcome.analysis
    print("\n" + "=" * 60)
    print(f"{address}, {postal_code or ''} {city or ''}")
    print("=" * 60)
    print(f"  Run:        {outcome.run.status.value}{' (' + outcome.run.error + ')' if outcome.run.error else ''}")
    if analysis:
        print(f"  Owner:      {analysis.owner_name} (CVR {analysis.owner_cvr or '-'})")
        print(f"  Quality:    {analysis.quality_tier.value} - {analysis.quality_reason}")
        for contact in analysis.contacts:
            print(
                f"    {contact.name or '?':30} {contact.email or '-':35} "
                f"{contact.relevance.value:8} {round(contact.confidence * 100):>3}%"
            )
    if outcome.corrections:
        print(f"  Corrections ({len(outcome.corrections)}):")
        for correction in outcome.corrections:
            print(f"    - {correction}")
    if outcome.final_status:
        print(f"  Final:      {outcome.final_status.value}")
        print(f"  Gate:       {gate_recommendation(outcome.gate_passed, outcome.gate_reason)}")
    print("=" * 60 + "\n")


def main():
    parser = argparse.ArgumentParser(description="Property ownership research")
    parser.add_argument("--status", action="store_true", help="Show properties waiting for research")
    parser.add_argument("--outreach-status", default=OutreachStatus.NEEDS_RESEARCH.value,
                        help="HubSpot outreach_status to pick properties from")
    parser.add_argument("--limit", type=int, default=10, help="Max properties per batch")
    parser.add_argument("--safe-mode", action="store_true", help="Research only, never write to HubSpot")
    parser.add_argument("--log-file", help="Write the captured run log to this file")
    parser.add_argument("--address", help="Research a single address (safe mode)")
    parser.add_argument("--postal-code", help="Postal code for --address")
    parser.add_argument("--city", help="City for --address")

    args = parser.parse_args()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    if args.status:
        asyncio.run(run_status(args.outreach_status, args.limit))
    elif args.address:
        asyncio.run(run_single(args.address, args.postal_code, args.city))
    else:
        asyncio.run(run_batch(args.outreach_status, args.limit, args.safe_mode, args.log_file))


if __name__ == "__main__":
    main()
