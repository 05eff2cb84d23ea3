from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable

from autoapply.core.logging import get_logger, log_extra
from autoapply.services import dom_queries as dom
from autoapply.services.answers import AnswerGenerator
from autoapply.services.automation import AutomationPage
from autoapply.services.field_rules import (
    DEMOGRAPHIC_FIELDS,
    LONGFORM_HINT_MARKERS,
    FieldHint,
    classify_hint,
    classify_longform,
    infer_demographic_field,
    lookup_answer,
    option_matches,
)
from autoapply.services.profile import CandidateProfile, ResumeAsset
from autoapply.services.repository import MissingFieldsLedger
from autoapply.services.run_log import RunLog
from autoapply.services.verification import VerificationSignal

logger = get_logger(__name__)

# Skip reasons that point at a gap in the profile rather than at the page.
MISSING_REASONS = frozenset({"no data", "missing-answer", "low confidence"})

NON_FILLABLE_TYPES = frozenset({"submit", "button", "reset", "image"})


@dataclass
class FieldOutcome:
    field: str
    reason: str | None = None
    hint: str = ""
    source: str | None = None


@dataclass
class FillReport:
    filled: list[FieldOutcome] = field(default_factory=list)
    skipped: list[FieldOutcome] = field(default_factory=list)
    captcha_detected: bool = False
    resume_uploaded: bool = False
    generated_answers: dict[str, str] = field(default_factory=dict)
    steps_advanced: int = 0

    def reason_counts(self) -> dict[str, int]:
        return dict(Counter(entry.reason or "unknown" for entry in self.skipped))

    def missing(self) -> list[FieldOutcome]:
        return [entry for entry in self.skipped if entry.reason in MISSING_REASONS]

    def merge(self, other: "FillReport") -> None:
        self.filled.extend(other.filled)
        self.skipped.extend(other.skipped)
        self.captcha_detected = self.captcha_detected or other.captcha_detected
        self.resume_uploaded = self.resume_uploaded or other.resume_uploaded
        self.generated_answers.update(other.generated_answers)


@dataclass
class FillTarget:
    """Per-attempt inputs; ``answers`` is the attempt's private copy of profile answers."""

    run_id: str
    listing_id: str
    apply_type: str
    profile: CandidateProfile
    resume: ResumeAsset | None
    answers: dict[str, str]


def build_hint(control: dict[str, Any]) -> FieldHint:
    parts = [
        control.get("label"),
        control.get("aria_label"),
        control.get("labelled_by"),
        control.get("placeholder"),
        control.get("name"),
        control.get("id"),
    ]
    text = " ".join(str(part).strip() for part in parts if part and str(part).strip())
    question = str(control.get("legend") or control.get("aria_label") or control.get("labelled_by") or "")
    option_label = " ".join(
        str(part).strip() for part in (control.get("label"), control.get("value")) if part and str(part).strip()
    )
    return FieldHint(text=text, question=question.strip(), option_label=option_label)


def is_submit_control(control: dict[str, Any], hint: FieldHint) -> bool:
    if control.get("type") in NON_FILLABLE_TYPES:
        return True
    lowered = hint.text.lower()
    return "submit_app" in lowered or "submit application" in lowered


class FormEngine:
    def __init__(
        self,
        *,
        run_log: RunLog,
        ledger: MissingFieldsLedger | None = None,
        generator: AnswerGenerator | None = None,
        persist_answer: Callable[[str, str], None] | None = None,
        verification: VerificationSignal | None = None,
        pause_on_verification: bool = False,
        verification_wait_seconds: float = 300,
        verification_poll_seconds: float = 2.0,
        max_steps: int = 3,
        step_settle_ms: int = 1500,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.run_log = run_log
        self.ledger = ledger
        self.generator = generator
        self.persist_answer = persist_answer
        self.verification = verification
        self.pause_on_verification = pause_on_verification
        self.verification_wait_seconds = verification_wait_seconds
        self.verification_poll_seconds = verification_poll_seconds
        self.max_steps = max_steps
        self.step_settle_ms = step_settle_ms
        self._sleep = sleep

    def fill_application(self, page: AutomationPage, target: FillTarget) -> FillReport:
        """Fill the current form, then walk forward through up to max_steps follow-up pages."""
        report = self.map_and_fill(page, target)
        report.steps_advanced = self.advance_steps(page, target, report)
        self._record_missing(target, report)
        counts = report.reason_counts()
        logger.info(
            "Filled %d fields, skipped %d",
            len(report.filled),
            len(report.skipped),
            extra=log_extra(listing_id=target.listing_id, skip_reasons=counts or None),
        )
        if counts:
            logger.warning("Skip reasons: %s", counts, extra=log_extra(listing_id=target.listing_id))
        return report

    def map_and_fill(self, page: AutomationPage, target: FillTarget, *, stage: str = "") -> FillReport:
        suffix = f"-{stage}" if stage else ""
        self._capture(page, target, f"before-fill{suffix}")
        report = FillReport()
        values = target.profile.field_values()
        controls = page.evaluate(dom.QUERY_CONTROLS) or []

        deferred: list[tuple[dict[str, Any], FieldHint]] = []
        handled_groups: set[str] = set()
        resume_selector: str | None = None

        for control in controls:
            control_type = str(control.get("type") or "text")
            if control_type == "hidden" or (not control.get("visible", True) and control_type != "file"):
                continue

            hint = build_hint(control)
            raw = hint.text.lower()

            if is_submit_control(control, hint):
                self._skip(target, report, "submit", "submit-control", hint)
                continue
            if dom.contains_any(raw, dom.CAPTCHA_HINT_PHRASES):
                report.captcha_detected = True
                self._skip(target, report, "captcha", "captcha", hint)
                continue
            if control_type == "file":
                if resume_selector is None:
                    resume_selector = dom.control_selector(control["index"])
                continue
            if control.get("tag") == "textarea" or any(marker in raw for marker in LONGFORM_HINT_MARKERS):
                deferred.append((control, hint))
                continue
            if control_type in ("radio", "checkbox"):
                self._fill_choice_group(page, target, report, control, controls, handled_groups, values)
                continue
            if not hint.text:
                self._skip(target, report, "unknown", "no hint", hint)
                continue

            match = classify_hint(hint.text)
            if match is None or not match.accepted:
                self._skip(target, report, match.field if match else "unknown", "low confidence", hint)
                continue

            value = values.get(match.field, "")
            if not value:
                self._skip(target, report, match.field, "no data", hint)
                continue
            if str(control.get("value") or "").strip():
                self._skip(target, report, match.field, "already filled", hint)
                continue

            if control.get("tag") == "select":
                self._fill_select(page, target, report, control, match.field, value, hint)
                continue

            page.fill(dom.control_selector(control["index"]), value)
            self._filled(target, report, match.field, hint, source="profile")

        if report.captcha_detected:
            self._pause_for_verification(target)

        self._fill_longform(page, target, report, deferred)
        self._upload_resume(page, target, report, resume_selector)
        self._capture(page, target, f"after-fill{suffix}")
        return report

    def advance_steps(self, page: AutomationPage, target: FillTarget, report: FillReport) -> int:
        advanced = 0
        for step in range(1, self.max_steps + 1):
            elements = page.evaluate(dom.QUERY_CLICKABLES, {"deep": False}) or []
            visible = [element for element in elements if element.get("visible", True)]
            if any(dom.is_submit_button(element) for element in visible):
                break
            next_button = next((element for element in visible if dom.is_next_step_button(element)), None)
            if next_button is None:
                break
            page.click(dom.click_selector(next_button["index"]))
            page.wait(self.step_settle_ms)
            advanced += 1
            self.run_log.event(
                target.listing_id,
                target.apply_type,
                "advance-step",
                status="advanced",
                reason=f"step-{step}",
                message=str(next_button.get("text") or ""),
            )
            report.merge(self.map_and_fill(page, target, stage=f"step-{step + 1}"))
        return advanced

    def _fill_select(
        self,
        page: AutomationPage,
        target: FillTarget,
        report: FillReport,
        control: dict[str, Any],
        field_name: str,
        value: str,
        hint: FieldHint,
    ) -> None:
        wanted = value.lower()
        chosen = None
        for option in control.get("options") or []:
            option_value = str(option.get("value") or "")
            option_text = str(option.get("text") or "")
            if not option_value:
                continue
            if field_name in DEMOGRAPHIC_FIELDS:
                if option_matches(field_name, value, option_text):
                    chosen = option_value
                    break
            elif wanted in option_text.lower():
                chosen = option_value
                break
        if chosen is None:
            self._skip(target, report, field_name, "no matching option", hint)
            return
        if page.evaluate(dom.SELECT_CONTROL_OPTION, {"index": control["index"], "value": chosen}):
            self._filled(target, report, field_name, hint, source="profile")
        else:
            self._skip(target, report, field_name, "no matching option", hint)

    def _fill_choice_group(
        self,
        page: AutomationPage,
        target: FillTarget,
        report: FillReport,
        control: dict[str, Any],
        controls: list[dict[str, Any]],
        handled_groups: set[str],
        values: dict[str, str],
    ) -> None:
        name = str(control.get("name") or "")
        group_key = f"{control.get('type')}:{name}" if name else f"#{control['index']}"
        if group_key in handled_groups:
            return
        handled_groups.add(group_key)

        if name:
            options = [
                item
                for item in controls
                if item.get("type") == control.get("type") and item.get("name") == name
            ]
        else:
            options = [control]
        hints = [build_hint(option) for option in options]
        question = next((hint.question for hint in hints if hint.question), "")
        group_hint = FieldHint(text=question or hints[0].text, question=question)

        if any(option.get("checked") or option.get("group_checked") for option in options):
            self._skip(target, report, name or "choice", "already filled", group_hint)
            return

        field_name = None
        for text in (question, " ".join(part for part in (name, str(control.get("id") or "")) if part)):
            match = classify_hint(text) if text else None
            if match is not None and match.accepted:
                field_name = match.field
                break
        if field_name is None:
            field_name = infer_demographic_field(question, " ".join(hint.option_label for hint in hints))
        if field_name is None:
            self._skip(target, report, name or "unknown", "unsupported input type", group_hint)
            return

        value = values.get(field_name, "")
        if not value:
            self._skip(target, report, field_name, "no data", group_hint)
            return

        for option, hint in zip(options, hints):
            if option_matches(field_name, value, hint.option_label):
                if page.evaluate(dom.CHECK_CONTROL, {"index": option["index"]}):
                    self._filled(target, report, field_name, group_hint, source="profile")
                    return
        self._skip(target, report, field_name, "no matching option", group_hint)

    def _fill_longform(
        self,
        page: AutomationPage,
        target: FillTarget,
        report: FillReport,
        deferred: list[tuple[dict[str, Any], FieldHint]],
    ) -> None:
        for control, hint in deferred:
            question = hint.text or hint.question
            key = classify_longform(question)
            if str(control.get("value") or "").strip():
                self._skip(target, report, key, "already filled", hint)
                continue

            answer = lookup_answer(target.answers, key)
            source = "profile"
            if not answer and self.generator is not None and question:
                answer = (self.generator.generate(question, target.profile) or "").strip()
                if answer:
                    source = "generated"
                    target.answers[key] = answer
                    report.generated_answers[key] = answer
                    if self.persist_answer is not None:
                        self.persist_answer(key, answer)
            if not answer:
                self._skip(target, report, key, "missing-answer", hint)
                continue

            page.fill(dom.control_selector(control["index"]), answer)
            self._filled(target, report, key, hint, source=source)

    def _upload_resume(
        self,
        page: AutomationPage,
        target: FillTarget,
        report: FillReport,
        selector: str | None,
    ) -> None:
        if selector is None:
            logger.warning("No resume file input found", extra=log_extra(listing_id=target.listing_id))
            self.run_log.event(
                target.listing_id, target.apply_type, "resume-upload", status="skipped", reason="no file input"
            )
            return
        if target.resume is None:
            self.run_log.event(
                target.listing_id, target.apply_type, "resume-upload", status="skipped", reason="no resume configured"
            )
            return
        page.upload_file(selector, target.resume.path)
        report.resume_uploaded = True
        self.run_log.event(
            target.listing_id, target.apply_type, "resume-upload", status="uploaded", field=target.resume.label
        )

    def _pause_for_verification(self, target: FillTarget) -> None:
        if not self.pause_on_verification or self.verification is None:
            return
        self.run_log.event(
            target.listing_id, target.apply_type, "pause-verification", status="waiting", reason="captcha detected"
        )
        logger.warning(
            "Verification detected. Complete it in the browser, then release the run to continue.",
            extra=log_extra(listing_id=target.listing_id),
        )
        kwargs = {"sleep": self._sleep} if self._sleep is not None else {}
        released = self.verification.wait(
            budget_seconds=self.verification_wait_seconds,
            poll_seconds=self.verification_poll_seconds,
            **kwargs,
        )
        self.run_log.event(
            target.listing_id,
            target.apply_type,
            "resume-verification",
            status="released" if released else "timeout",
        )

    def _record_missing(self, target: FillTarget, report: FillReport) -> None:
        missing = report.missing()
        if not missing:
            return
        if self.ledger is not None:
            self.ledger.append(
                run_id=target.run_id,
                listing_id=target.listing_id,
                apply_type=target.apply_type,
                missing=[{"field": entry.field, "hint": entry.hint, "reason": entry.reason} for entry in missing],
            )
        self.run_log.event(
            target.listing_id,
            target.apply_type,
            "missing-fields",
            status="recorded",
            reason=f"{len(missing)} missing fields",
        )

    def _capture(self, page: AutomationPage, target: FillTarget, step: str) -> str | None:
        return capture_step(self.run_log, page, target.listing_id, target.apply_type, step)

    def _skip(self, target: FillTarget, report: FillReport, field_name: str, reason: str, hint: FieldHint) -> None:
        report.skipped.append(FieldOutcome(field=field_name, reason=reason, hint=hint.text))
        self.run_log.event(
            target.listing_id,
            target.apply_type,
            "field-skipped",
            status="skipped",
            field=field_name,
            reason=reason,
            hint=hint.text or None,
        )

    def _filled(self, target: FillTarget, report: FillReport, field_name: str, hint: FieldHint, *, source: str) -> None:
        report.filled.append(FieldOutcome(field=field_name, hint=hint.text, source=source))
        self.run_log.event(
            target.listing_id,
            target.apply_type,
            "field-filled",
            status="filled",
            field=field_name,
            data={"source": source},
        )


def capture_step(run_log: RunLog, page: AutomationPage, listing_id: str, apply_type: str, step: str) -> str | None:
    path = run_log.screenshot_path(listing_id, step)
    try:
        page.screenshot(path)
    except Exception as exc:
        logger.warning("Screenshot %s failed: %s", step, exc, extra=log_extra(listing_id=listing_id))
        run_log.event(listing_id, apply_type, step, status="screenshot-failed", reason=str(exc)[:300])
        return None
    run_log.event(listing_id, apply_type, step, status="captured", screenshot_path=str(path))
    return str(path)
