"""Per-property research workflow and batch runner.

State machine for one property:

    queued → marking_in_progress → researching → analyzing → validating
           → [email_hunting] → writing_back → contact_upserting → [drafting]
           → quality_gating → completed

Any stage may end in failed or cancelled. Cancellation is polled between
stages, never inside one. A failure is isolated to its property: the batch
goes on with the next one.

In safe mode research, analysis and validation still run, but every write
to the system of record is replaced by a "would write" log line.

Research never marks a property ready for outreach. The quality gate only
adds a recommendation to the research summary.
"""

import time
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Callable, Tuple

from loguru import logger

from services.ownership.analysis import UNKNOWN_OWNER, ContactAnalyzer, draft_outreach_email
from services.ownership.config import OwnershipConfig, QualityGate
from services.ownership.dedupe import (
    CrossBatchContactTracker,
    apply_cross_batch_penalty,
    best_contact_with_email,
    penalize_contact,
)
from services.ownership.email_hunt import EmailHunter
from services.ownership.errors import RunCancelled
from services.ownership.interfaces import ISystemOfRecord, ProgressSink, notify
from services.ownership.locations import is_supported_location
from services.ownership.models import (
    AnalysisResult,
    CandidateContact,
    DataQualityTier,
    EmailDraft,
    OutreachStatus,
    ProgressEvent,
    PropertyRecord,
    Relevance,
    RunStatus,
    StepLog,
    StepStatus,
    WorkflowRun,
    utc_now,
)
from services.ownership.research import PropertyResearcher, ResearchResult
from services.ownership.validator import is_generic_mailbox, sort_contacts, validate_analysis

StopCheck = Callable[[], bool]

# Rough progress per state, for the progress sink
STATE_PERCENT = {
    "queued": 0,
    "marking_in_progress": 5,
    "researching": 10,
    "analyzing": 50,
    "validating": 65,
    "email_hunting": 70,
    "writing_back": 80,
    "contact_upserting": 85,
    "drafting": 90,
    "quality_gating": 95,
    "completed": 100,
}

HUNT_BELOW_CONFIDENCE = 0.3


# ── Process-wide shutdown flag ──────────────────────────────────────

_shutdown_requested = False


def request_shutdown() -> None:
    """Ask every running batch to stop at its next cancellation point."""
    global _shutdown_requested
    _shutdown_requested = True
    logger.warning("Shutdown requested, stopping after the current stage")


def clear_shutdown() -> None:
    global _shutdown_requested
    _shutdown_requested = False


def shutdown_requested() -> bool:
    return _shutdown_requested


# ── Bounded stores ──────────────────────────────────────────────────


class RunHistory:
    """The most recent WorkflowRuns, oldest evicted first."""

    def __init__(self, size: int = 50):
        self._runs: deque = deque(maxlen=size)

    def add(self, run: WorkflowRun) -> None:
        self._runs.append(run)

    def recent(self, limit: Optional[int] = None) -> List[WorkflowRun]:
        """Newest first."""
        runs = list(reversed(self._runs))
        return runs[:limit] if limit else runs

    def latest_for(self, property_id: str) -> Optional[WorkflowRun]:
        for run in reversed(self._runs):
            if run.property_id == property_id:
                return run
        return None

    def clear(self) -> None:
        self._runs.clear()

    def __len__(self) -> int:
        return len(self._runs)


class RawResearchStore:
    """Raw research output per property, kept for inspection. Bounded."""

    def __init__(self, size: int = 100):
        self.size = size
        self._items: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()

    def put(self, property_id: str, payload: Dict[str, Any]) -> None:
        self._items.pop(property_id, None)
        self._items[property_id] = payload
        while len(self._items) > self.size:
            self._items.popitem(last=False)

    def get(self, property_id: str) -> Optional[Dict[str, Any]]:
        return self._items.get(property_id)

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)


# ── Quality gate ────────────────────────────────────────────────────


def quality_gate_reason(
    contact: Optional[CandidateContact],
    tier: DataQualityTier,
    gate: Optional[QualityGate] = None,
) -> Tuple[bool, str]:
    """(passed, why) for recommending a property for outreach."""
    gate = gate or QualityGate()
    if contact is None or not contact.email:
        return False, "no contact with e-mail"
    if tier == DataQualityTier.LOW:
        return False, "data quality low"
    if contact.confidence < gate.min_confidence and tier != DataQualityTier.HIGH:
        return False, (
            f"confidence {round(contact.confidence * 100)}% below "
            f"{round(gate.min_confidence * 100)}% and tier is {tier.value}"
        )
    if contact.relevance == Relevance.INDIRECT and contact.confidence < gate.indirect_min_confidence:
        return False, (
            f"indirect contact at {round(contact.confidence * 100)}% "
            f"(needs {round(gate.indirect_min_confidence * 100)}%)"
        )
    return True, f"{contact.email} at {round(contact.confidence * 100)}%, tier {tier.value}"


def passes_quality_gate(
    contact: Optional[CandidateContact],
    tier: DataQualityTier,
    gate: Optional[QualityGate] = None,
) -> bool:
    return quality_gate_reason(contact, tier, gate)[0]


def gate_recommendation(passed: bool, reason: str) -> str:
    """Line appended to the research summary for the person approving outreach."""
    verdict = "klar til udsendelse" if passed else "afventer kontakt"
    return f"Anbefaling: {verdict} ({reason})"


# ── Results ─────────────────────────────────────────────────────────


@dataclass
class PropertyOutcome:
    property: PropertyRecord
    run: WorkflowRun
    analysis: Optional[AnalysisResult] = None
    corrections: List[str] = field(default_factory=list)
    dedupe_notes: List[str] = field(default_factory=list)
    draft: Optional[EmailDraft] = None
    final_status: Optional[OutreachStatus] = None
    gate_passed: bool = False
    gate_reason: str = ""

    @property
    def best_contact(self) -> Optional[CandidateContact]:
        return best_contact_with_email(self.analysis.contacts) if self.analysis else None


@dataclass
class BatchResult:
    outcomes: List[PropertyOutcome] = field(default_factory=list)
    skipped: List[Tuple[str, str]] = field(default_factory=list)  # (property id, reason)
    cancelled: bool = False

    @property
    def runs(self) -> List[WorkflowRun]:
        return [o.run for o in self.outcomes]

    def count(self, status: RunStatus) -> int:
        return sum(1 for o in self.outcomes if o.run.status == status)

    @property
    def recommended(self) -> int:
        return sum(1 for o in self.outcomes if o.gate_passed)

    def summary(self) -> str:
        return (
            f"{len(self.outcomes)} processed, {self.count(RunStatus.COMPLETED)} completed, "
            f"{self.count(RunStatus.FAILED)} failed, {self.count(RunStatus.CANCELLED)} cancelled, "
            f"{len(self.skipped)} skipped, {self.recommended} recommended for outreach"
        )


# ── Workflow ────────────────────────────────────────────────────────


class OwnershipWorkflow:
    """Runs the research pipeline for properties and writes the outcome back."""

    def __init__(
        self,
        system_of_record: ISystemOfRecord,
        researcher: PropertyResearcher,
        analyzer: ContactAnalyzer,
        hunter: Optional[EmailHunter] = None,
        config: Optional[OwnershipConfig] = None,
        history: Optional[RunHistory] = None,
        tracker: Optional[CrossBatchContactTracker] = None,
        raw_store: Optional[RawResearchStore] = None,
    ):
        self.config = config or OwnershipConfig()
        self.system_of_record = system_of_record
        self.researcher = researcher
        self.analyzer = analyzer
        self.hunter = hunter
        self.history = history if history is not None else RunHistory(self.config.run_history_size)
        self.tracker = tracker if tracker is not None else CrossBatchContactTracker()
        self.raw_store = raw_store if raw_store is not None else RawResearchStore(self.config.raw_research_size)

    # ── Batch ──

    async def process_batch(
        self,
        properties: List[PropertyRecord],
        should_stop: Optional[StopCheck] = None,
        on_progress: Optional[ProgressSink] = None,
    ) -> BatchResult:
        """Process properties sequentially. The dedupe tracker starts empty for every batch."""
        self.tracker.reset()
        batch = BatchResult()
        t0 = time.monotonic()
        mode = " (SAFE MODE, no writes)" if self.config.safe_mode else ""
        logger.info(f"Batch started: {len(properties)} properties{mode}")

        for i, prop in enumerate(properties, 1):
            if self._stop_requested(should_stop):
                batch.cancelled = True
                logger.warning(f"Batch cancelled before property {i}/{len(properties)}")
                break

            if self.config.supported_cities_only:
                supported, reason = is_supported_location(prop.city, prop.postal_code)
                if not supported:
                    logger.info(f"{prop.tag} Skipped: {reason}")
                    batch.skipped.append((prop.property_id, reason))
                    self._emit(on_progress, "skipped", f"Skipped {prop.address}", reason, prop.property_id, 100)
                    continue

            logger.info(f"{prop.tag} Property {i}/{len(properties)}")
            outcome = await self.process_property(prop, should_stop, on_progress)
            batch.outcomes.append(outcome)
            if outcome.run.status == RunStatus.CANCELLED:
                batch.cancelled = True
                break

        logger.info(f"Batch finished in {time.monotonic() - t0:.1f}s: {batch.summary()}")
        return batch

    # ── One property ──

    async def process_property(
        self,
        property: PropertyRecord,
        should_stop: Optional[StopCheck] = None,
        on_progress: Optional[ProgressSink] = None,
    ) -> PropertyOutcome:
        tag = property.tag
        run = WorkflowRun(property_id=property.property_id, address=property.address)
        self.history.add(run)
        outcome = PropertyOutcome(property=property, run=run)
        t0 = time.monotonic()

        def emit(event: ProgressEvent) -> None:
            notify(on_progress, event)

        def progress(state: str, message: str, detail: Optional[str] = None) -> None:
            self._emit(on_progress, state, message, detail, property.property_id, STATE_PERCENT.get(state))

        try:
            step = self._begin(run, "queued", "Queued")
            self._finish(step)
            progress("queued", f"Queued {property.address}")

            # ── Mark in progress ──
            self._check_cancel(should_stop)
            step = self._begin(run, "marking_in_progress", "Mark research in progress")
            progress("marking_in_progress", "Marking research in progress")
            wrote = await self._write_fields(property, {"outreach_status": OutreachStatus.RESEARCH_IN_PROGRESS.value})
            self._finish(step, None if wrote else "safe mode", skipped=not wrote)

            # ── Research ──
            self._check_cancel(should_stop)
            step = self._begin(run, "researching", "Registries and web research")
            progress("researching", "Researching ownership")
            research = await self.researcher.research(property, emit)
            self._finish(step, research.summary())

            # ── Analysis ──
            self._check_cancel(should_stop)
            step = self._begin(run, "analyzing", "Owner assessment and contact ranking")
            progress("analyzing", "Analyzing owner and contacts")
            analysis = await self.analyzer.analyze(
                property, research.ownership, research.ownership_type,
                research.registry_match, research.collected,
            )
            self._finish(step, (
                f"owner={analysis.owner_name} tier={analysis.quality_tier.value} "
                f"contacts={len(analysis.contacts)} rejected={len(self.analyzer.rejected)}"
            ))

            # ── Validation + dedupe ──
            self._check_cancel(should_stop)
            step = self._begin(run, "validating", "Evidence validation")
            progress("validating", "Validating against evidence")
            analysis = self._validate(tag, analysis, research, outcome)
            analysis.contacts, notes = apply_cross_batch_penalty(
                analysis.contacts, property.property_id, self.tracker, self.config.dedupe,
            )
            outcome.dedupe_notes.extend(notes)
            outcome.analysis = analysis
            self._finish(step, f"{len(outcome.corrections)} corrections, {len(notes)} dedupe penalties")

            # ── Optional e-mail hunt ──
            self._check_cancel(should_stop)
            if self._needs_hunt(analysis):
                step = self._begin(run, "email_hunting", "E-mail hunt")
                progress("email_hunting", "Searching for a direct e-mail")
                found = await self._hunt(tag, analysis, research, outcome)
                analysis = outcome.analysis
                self._finish(step, f"found {found}" if found else "nothing found")

            # ── Write back ──
            self._check_cancel(should_stop)
            self.raw_store.put(property.property_id, self._raw_payload(research, analysis, outcome))
            step = self._begin(run, "writing_back", "Write research results")
            progress("writing_back", "Writing research results")
            wrote = await self._write_fields(property, self._result_fields(research, analysis))
            self._finish(step, None if wrote else "safe mode", skipped=not wrote)

            # ── Contacts ──
            self._check_cancel(should_stop)
            step = self._begin(run, "contact_upserting", "Upsert contacts")
            progress("contact_upserting", "Saving contacts")
            contact_ids = await self._upsert_contacts(property, analysis)
            self._finish(step, f"{len(contact_ids)} contacts" if not self.config.safe_mode else "safe mode",
                         skipped=self.config.safe_mode)

            # ── Draft ──
            self._check_cancel(should_stop)
            best = best_contact_with_email(analysis.contacts)
            if best and self.config.draft_emails:
                step = self._begin(run, "drafting", "Outreach draft")
                progress("drafting", f"Drafting e-mail to {best.email}")
                outcome.draft = await draft_outreach_email(self.analyzer.service, property, best, analysis)
                if outcome.draft:
                    await self._save_draft(property, best, outcome.draft, contact_ids)
                self._finish(step, outcome.draft.subject if outcome.draft else "no draft")

            # ── Quality gate ──
            # A recommendation only: the status stays pending until a person approves outreach
            self._check_cancel(should_stop)
            if best:
                self.tracker.record(best.email, property.property_id)
            step = self._begin(run, "quality_gating", "Quality gate")
            outcome.gate_passed, outcome.gate_reason = quality_gate_reason(
                best, analysis.quality_tier, self.config.gate,
            )
            outcome.final_status = OutreachStatus.CONTACT_PENDING
            recommendation = gate_recommendation(outcome.gate_passed, outcome.gate_reason)
            logger.info(f"{tag} {recommendation}")
            progress("quality_gating", recommendation, outcome.gate_reason)
            await self._write_fields(property, {
                "research_summary": self._summary_text(research, analysis) + "\n" + recommendation,
            })
            self._finish(step, recommendation)

            run.status = RunStatus.COMPLETED
            logger.info(
                f"{tag} Completed: {outcome.final_status.value} ({recommendation}) "
                f"[{time.monotonic() - t0:.1f}s]"
            )
            progress("completed", f"Done: {outcome.final_status.value}", recommendation)

        except RunCancelled as e:
            run.status = RunStatus.CANCELLED
            run.error = str(e)
            self._abort_open_step(run, StepStatus.SKIPPED, "cancelled")
            logger.warning(f"{tag} Cancelled [{time.monotonic() - t0:.1f}s]")
            self._emit(on_progress, "cancelled", "Run cancelled", None, property.property_id, 100)

        except Exception as e:
            run.status = RunStatus.FAILED
            run.error = f"{type(e).__name__}: {e}"
            self._abort_open_step(run, StepStatus.FAILED, run.error)
            logger.error(f"{tag} Failed: {run.error} [{time.monotonic() - t0:.1f}s]")
            await self._mark_error(property)
            self._emit(on_progress, "error", "Run failed", run.error, property.property_id, 100)

        run.completed_at = utc_now()
        return outcome

    # ── Stages ──

    def _validate(
        self,
        tag: str,
        analysis: AnalysisResult,
        research: ResearchResult,
        outcome: PropertyOutcome,
    ) -> AnalysisResult:
        validated = validate_analysis(
            analysis, research.collected.evidence, research.ownership,
            research.registry_match, self.config.validation,
        )
        for correction in validated.corrections:
            logger.warning(f"{tag} Validator: {correction}")
        outcome.corrections.extend(validated.corrections)
        return validated.analysis

    def _needs_hunt(self, analysis: AnalysisResult) -> bool:
        if not self.config.email_hunt or self.hunter is None:
            return False
        best = best_contact_with_email(analysis.contacts)
        if best is None:
            return True
        return is_generic_mailbox(best.email, self.config.validation) or best.confidence < HUNT_BELOW_CONFIDENCE

    async def _hunt(
        self,
        tag: str,
        analysis: AnalysisResult,
        research: ResearchResult,
        outcome: PropertyOutcome,
    ) -> Optional[str]:
        """Look for a published e-mail for each named contact without a usable one.

        A hit is added to the evidence set, the analysis is validated again and
        only the updated contact gets the reuse penalty.
        """
        evidence = research.collected.evidence
        company = analysis.owner_name if analysis.owner_name != UNKNOWN_OWNER else None
        for contact in analysis.contacts:
            if not contact.name:
                continue
            if contact.email and not is_generic_mailbox(contact.email, self.config.validation):
                continue
            hunt = await self.hunter.find_email(
                contact.name,
                company_name=company,
                known_emails=list(evidence.allowed_emails),
                website_url=research.website_url,
            )
            if not hunt.email:
                continue

            logger.info(f"{tag} Email hunt: {hunt.email} for {contact.name} ({hunt.source})")
            evidence.add_email(hunt.email, f"email hunt: {hunt.source}")
            contact.email = hunt.email
            contact.source = f"email hunt: {hunt.source}"
            contact.confidence = max(contact.confidence, hunt.confidence)
            notes = penalize_contact(
                contact, self.tracker.usage(hunt.email, research.property.property_id), self.config.dedupe,
            )
            outcome.dedupe_notes.extend(notes)
            for note in notes:
                logger.info(f"{tag} Dedupe: {note}")

            analysis.contacts = sort_contacts(analysis.contacts)
            outcome.analysis = self._validate(tag, analysis, research, outcome)
            return hunt.email
        return None

    def _result_fields(self, research: ResearchResult, analysis: AnalysisResult) -> Dict[str, str]:
        fields = {
            "outreach_status": OutreachStatus.CONTACT_PENDING.value,
            "outdoor_score": str(analysis.score) if analysis.score else "",
            "research_summary": self._summary_text(research, analysis),
            "research_links": "\n".join(self._research_links(research)),
        }
        if analysis.owner_name != UNKNOWN_OWNER:
            fields["owner_company_name"] = analysis.owner_name
        if analysis.owner_cvr:
            fields["owner_company_cvr"] = analysis.owner_cvr
        best = best_contact_with_email(analysis.contacts)
        if best:
            fields["kontaktperson"] = best.name or ""
            fields["mailadresse"] = best.email or ""
            fields["telefonnummer"] = best.phone or ""
        return fields

    @staticmethod
    def _summary_text(research: ResearchResult, analysis: AnalysisResult) -> str:
        lines = [
            f"Ejer: {analysis.owner_name}" + (f" (CVR {analysis.owner_cvr})" if analysis.owner_cvr else ""),
            f"Ejerskabstype: {research.ownership_type.value}",
            f"Datakvalitet: {analysis.quality_tier.value} - {analysis.quality_reason}",
        ]
        if research.ownership:
            lines.append(f"BFE: {research.ownership.bfe_number}")
        if analysis.key_insights:
            lines.append(analysis.key_insights)
        for contact in analysis.contacts[:3]:
            lines.append(
                f"- {contact.name or '?'} <{contact.email or 'ingen e-mail'}> "
                f"{contact.relevance.value} {round(contact.confidence * 100)}%"
            )
        return "\n".join(lines)

    @staticmethod
    def _research_links(research: ResearchResult) -> List[str]:
        links: List[str] = []
        if research.registry_match:
            links.append(f"https://datacvr.virk.dk/enhed/virksomhed/{research.registry_match.candidate.cvr}")
        links.extend(p.url for p in research.pages)
        links.extend(r.url for r in research.search_results[:5])
        return list(dict.fromkeys(links))

    @staticmethod
    def _raw_payload(
        research: ResearchResult,
        analysis: AnalysisResult,
        outcome: PropertyOutcome,
    ) -> Dict[str, Any]:
        return {
            "property": research.property.model_dump(),
            "ownership": research.ownership.model_dump() if research.ownership else None,
            "ownership_type": research.ownership_type.value,
            "registry_match": research.registry_match.model_dump() if research.registry_match else None,
            "rejected_matches": [m.model_dump() for m in research.rejected_matches],
            "search_results": [r.model_dump() for r in research.search_results],
            "pages": [p.model_dump() for p in research.pages],
            "contacts": research.collected.indexed(),
            "analysis": analysis.model_dump(mode="json"),
            "corrections": list(outcome.corrections),
            "dedupe_notes": list(outcome.dedupe_notes),
        }

    async def _upsert_contacts(self, property: PropertyRecord, analysis: AnalysisResult) -> Dict[str, str]:
        """Upsert every contact with an e-mail, keyed by it. Returns e-mail → contact id."""
        ids: Dict[str, str] = {}
        for contact in analysis.contacts:
            if not contact.email:
                continue
            if self.config.safe_mode:
                logger.info(f"{property.tag} [SAFE MODE] would upsert contact {contact.name} <{contact.email}>")
                continue
            contact_id = await self.system_of_record.create_contact(
                property.property_id, contact.name, contact.email, contact.phone,
            )
            ids[contact.email.lower()] = contact_id
        return ids

    async def _save_draft(
        self,
        property: PropertyRecord,
        contact: CandidateContact,
        draft: EmailDraft,
        contact_ids: Dict[str, str],
    ) -> None:
        if self.config.safe_mode:
            logger.info(f"{property.tag} [SAFE MODE] would save draft '{draft.subject}' for {contact.email}")
            return
        await self.system_of_record.update_fields(property.property_id, {
            "email_draft_subject": draft.subject,
            "email_draft_body": draft.body_text,
            "email_draft_note": draft.internal_note,
        })
        contact_id = contact_ids.get((contact.email or "").lower())
        if contact_id:
            await self.system_of_record.attach_note(
                contact_id, "Udkast: outreach mail #1", f"Emne: {draft.subject}\n\n{draft.body_text}",
            )
            await self.system_of_record.create_follow_up_task(
                contact_id, f"Send outreach mail: {property.address}",
            )

    # ── Plumbing ──

    async def _write_fields(self, property: PropertyRecord, fields: Dict[str, str]) -> bool:
        """Returns False when the write was suppressed by safe mode."""
        if self.config.safe_mode:
            logger.info(f"{property.tag} [SAFE MODE] would write {', '.join(sorted(fields))}")
            return False
        await self.system_of_record.update_fields(property.property_id, fields)
        return True

    async def _mark_error(self, property: PropertyRecord) -> None:
        if self.config.safe_mode:
            logger.info(f"{property.tag} [SAFE MODE] would mark {OutreachStatus.ERROR.value}")
            return
        try:
            await self.system_of_record.update_fields(
                property.property_id, {"outreach_status": OutreachStatus.ERROR.value},
            )
        except Exception as e:
            logger.error(f"{property.tag} Could not mark {OutreachStatus.ERROR.value}: {e}")

    @staticmethod
    def _stop_requested(should_stop: Optional[StopCheck]) -> bool:
        return shutdown_requested() or bool(should_stop and should_stop())

    def _check_cancel(self, should_stop: Optional[StopCheck]) -> None:
        if self._stop_requested(should_stop):
            raise RunCancelled()

    @staticmethod
    def _begin(run: WorkflowRun, step_id: str, name: str) -> StepLog:
        step = StepLog(step_id=step_id, name=name)
        run.steps.append(step)
        return step

    @staticmethod
    def _finish(step: StepLog, details: Optional[str] = None, skipped: bool = False) -> None:
        step.status = StepStatus.SKIPPED if skipped else StepStatus.COMPLETED
        step.completed_at = utc_now()
        step.details = details

    @staticmethod
    def _abort_open_step(run: WorkflowRun, status: StepStatus, details: str) -> None:
        if run.steps and run.steps[-1].status == StepStatus.RUNNING:
            run.steps[-1].status = status
            run.steps[-1].completed_at = utc_now()
            run.steps[-1].details = details

    @staticmethod
    def _emit(
        sink: Optional[ProgressSink],
        phase: str,
        message: str,
        detail: Optional[str],
        property_id: Optional[str],
        percent: Optional[int],
    ) -> None:
        notify(sink, ProgressEvent(
            phase=phase, message=message, detail=detail,
            percent=percent, property_id=property_id,
        ))
