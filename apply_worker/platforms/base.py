"""Site adapter contract and the shared form-filling state machine.

Design rules:
  - supports(url) is a pure host check; the registry picks the first match.
  - Selectors are data (FormSelectors / StaticField tuples). Subclasses
    declare them; the control flow lives here once.
  - Never submit with a guessed answer: a required field the adapter could
    not answer from the profile or user-provided inputs stops the run with
    needs_input before the submit control is touched.
  - Any exception escaping a step becomes failed / ADAPTER_ERROR.
"""

import logging
import tempfile
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from apply_worker.browser.actions import (
    clean_label,
    collapse_whitespace,
    find_all_first,
    find_first,
    human_pause,
    is_placeholder_option,
    is_required,
    read_label,
    select_is_unset,
    select_options,
    wait_for_any,
)
from apply_worker.core.errors import ALREADY_APPLIED_PHRASES, CAPTCHA_PHRASES
from apply_worker.core.schemas import ApplyResult, ApplyStatus, Profile, RequiredInput
from apply_worker.core.urls import hostname
from apply_worker.platforms.field_mapper import (
    authorization_answer,
    control_label_text,
    generate_generic_response,
    handle_dropdown,
    handle_radio_group,
    handle_textarea,
    handle_work_auth_dropdown,
    handle_yes_no_question,
    has_yes_no_options,
    is_work_authorization_label,
    match_label_to_profile,
    select_yes_no_option,
)

logger = logging.getLogger(__name__)

OUTSIDE_QUESTIONS_JS = "(el, selector) => el.closest(selector) === null"

# With no success or failure signal after submit, the run counts as succeeded.
ASSUME_SUCCESS_WITHOUT_SIGNAL = True

FORM_WAIT_MS = 10000
FORM_WAIT_NO_BUTTON_MS = 5000
POST_SUBMIT_IDLE_MS = 15000
MAX_ERROR_TEXTS = 3


@dataclass
class ApplyContext:
    """Everything an adapter needs for one application."""

    page: Any
    job_url: str
    profile: Profile
    resume_path: Path
    dry_run: bool = False
    user_inputs: dict[str, str] = field(default_factory=dict)
    use_generic_answers: bool = False
    screenshot_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))


class SiteAdapter(ABC):
    """Base class that every ATS adapter must implement."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable adapter name (e.g. 'Greenhouse')."""

    @abstractmethod
    def supports(self, url: str) -> bool:
        """True if this adapter handles ``url``."""

    @abstractmethod
    async def apply(self, ctx: ApplyContext) -> ApplyResult:
        """Fill and (unless dry run) submit the application."""


@dataclass(frozen=True)
class StaticField:
    """A well-known form field filled straight from the profile."""

    label: str
    selectors: tuple[str, ...]
    value: Callable[[Profile], str | None]


@dataclass(frozen=True)
class FormSelectors:
    apply_button: tuple[str, ...]
    form: tuple[str, ...]
    form_inputs: tuple[str, ...]
    submit: tuple[str, ...]
    resume_input: tuple[str, ...]
    cover_letter_input: tuple[str, ...]
    question_containers: tuple[str, ...]
    question_label: tuple[str, ...]
    error_elements: tuple[str, ...]
    select: tuple[str, ...] = ("select",)
    combobox: tuple[str, ...] = ('[role="combobox"]',)
    combobox_value: tuple[str, ...] = ('[class*="single-value"]', '[class*="singleValue"]')
    combobox_option: tuple[str, ...] = ('[role="option"]',)
    textarea: tuple[str, ...] = ("textarea",)
    radio: tuple[str, ...] = ('input[type="radio"]',)
    text_input: tuple[str, ...] = (
        'input[type="text"]',
        'input[type="email"]',
        'input[type="tel"]',
        'input[type="url"]',
        'input[type="number"]',
    )


@dataclass
class RunState:
    filled: int = 0
    failed: list[str] = field(default_factory=list)
    screenshots: list[str] = field(default_factory=list)
    generic_answers: list[str] = field(default_factory=list)

    def result(self, status: ApplyStatus, **kwargs: Any) -> ApplyResult:
        return ApplyResult(
            status=status,
            fields_filled_count=self.filled,
            fields_failed=list(self.failed),
            screenshots=list(self.screenshots),
            generic_answers=list(self.generic_answers),
            **kwargs,
        )


@dataclass(frozen=True)
class _Question:
    container: Any
    label: str
    raw_label: str
    control: Any
    kind: str


class FormAdapter(SiteAdapter):
    """Navigate, fill, gate, submit and read the outcome of a single-page form."""

    hosts: tuple[str, ...] = ()
    selectors: FormSelectors
    static_fields: tuple[StaticField, ...] = ()
    success_phrases: tuple[str, ...] = ()
    confirmation_url_parts: tuple[str, ...] = ("/thanks", "/confirmation", "/applied")

    def supports(self, url: str) -> bool:
        host = hostname(url)
        return any(host == h or host.endswith(f".{h}") for h in self.hosts)

    async def apply(self, ctx: ApplyContext) -> ApplyResult:
        state = RunState()
        page = ctx.page
        try:
            # Step 1: Navigate to the form
            if not await self.navigate_to_form(ctx):
                return state.result(
                    ApplyStatus.FAILED,
                    error_code="FORM_NOT_FOUND",
                    error_message="Could not find or navigate to application form",
                )
            await self._screenshot(ctx, state, "form-loaded")

            # Step 2: Static fields, then site-specific extras
            await self._fill_static_fields(ctx, state)
            await self.fill_site_fields(ctx, state)

            # Step 3: Custom questions
            await self._fill_custom_questions(ctx, state)

            # Step 4: Resume (best effort), cover letter is detection only
            if await self._upload_resume(ctx):
                state.filled += 1
            if await find_first(page, self.selectors.cover_letter_input) is not None:
                logger.info("%s: cover letter field present, none provided", self.name)

            logger.info(
                "%s: filled %d fields, failed: %s",
                self.name, state.filled, ", ".join(state.failed) or "none",
            )
            await self._screenshot(ctx, state, "pre-submit")

            # Step 5: Pre-submit gate
            unfilled = await self.detect_unfilled_required_fields(page)
            if unfilled:
                logger.info(
                    "%s: %d required field(s) need input: %s",
                    self.name, len(unfilled), ", ".join(f.field_name for f in unfilled),
                )
                return state.result(
                    ApplyStatus.NEEDS_INPUT,
                    required_inputs=unfilled,
                    error_message=f"Application requires answers to {len(unfilled)} question(s)",
                )

            # Step 6: Dry run stops here
            if ctx.dry_run:
                return state.result(
                    ApplyStatus.DRY_RUN_COMPLETE,
                    confirmation_message="Dry run completed - form filled but not submitted",
                )

            # Step 7: Submit
            submit = await find_first(page, self.selectors.submit)
            if submit is None:
                return state.result(
                    ApplyStatus.FAILED,
                    error_code="SUBMIT_FAILED",
                    error_message="Could not find submit button",
                )
            await submit.click()
            try:
                await page.wait_for_load_state("networkidle", timeout=POST_SUBMIT_IDLE_MS)
            except Exception:
                logger.debug("No network idle after submit", exc_info=True)
            await self._screenshot(ctx, state, "post-submit")

            # Step 8: Outcome
            return await self.detect_outcome(page, state)
        except Exception as e:
            logger.exception("%s adapter error", self.name)
            await self._screenshot(ctx, state, "error")
            return state.result(
                ApplyStatus.FAILED,
                error_code="ADAPTER_ERROR",
                error_message=str(e) or type(e).__name__,
            )

    # --- Steps ---

    async def navigate_to_form(self, ctx: ApplyContext) -> bool:
        page = ctx.page
        if (
            await find_first(page, self.selectors.form) is not None
            and await find_first(page, self.selectors.form_inputs) is not None
        ):
            logger.debug("%s: already on application form", self.name)
            return True

        button = await find_first(page, self.selectors.apply_button)
        if button is None:
            return await wait_for_any(page, self.selectors.form, timeout_ms=FORM_WAIT_NO_BUTTON_MS) is not None

        await button.click()
        try:
            await page.wait_for_load_state("domcontentloaded")
        except Exception:
            logger.debug("Load state wait after apply click failed", exc_info=True)
        return await wait_for_any(page, self.selectors.form, timeout_ms=FORM_WAIT_MS) is not None

    async def _fill_static_fields(self, ctx: ApplyContext, state: RunState) -> None:
        for static in self.static_fields:
            value = static.value(ctx.profile)
            if not value:
                continue
            element = await find_first(ctx.page, static.selectors)
            if element is None:
                logger.debug("%s: no element for %s", self.name, static.label)
                continue
            try:
                await element.fill(value)
                state.filled += 1
            except Exception:
                logger.warning("%s: failed to fill %s", self.name, static.label, exc_info=True)
                state.failed.append(static.label)

    async def fill_site_fields(self, ctx: ApplyContext, state: RunState) -> None:
        """Hook for site-specific fields beyond plain text inputs."""

    async def _upload_resume(self, ctx: ApplyContext) -> bool:
        try:
            file_input = await find_first(ctx.page, self.selectors.resume_input)
            if file_input is None:
                logger.info("%s: no resume input found", self.name)
                return False
            await file_input.set_input_files(str(ctx.resume_path))
            await ctx.page.wait_for_timeout(1000)
            return True
        except Exception:
            logger.warning("%s: resume upload failed", self.name, exc_info=True)
            return False

    # --- Custom questions ---

    async def _questions(self, page: Any) -> list[_Question]:
        questions: list[_Question] = []
        # one selector list so nested matches come back once, in document order
        containers = await page.query_selector_all(", ".join(self.selectors.question_containers))
        for container in containers:
            raw_label = await read_label(container, self.selectors.question_label)
            label = clean_label(raw_label)
            if not label:
                continue
            control, kind = await self._find_control(container)
            if control is None:
                continue
            questions.append(_Question(container, label, raw_label, control, kind))
        questions.extend(await self._loose_questions(page))
        return questions

    async def _loose_questions(self, page: Any) -> list[_Question]:
        """Visible controls that sit outside every question container."""
        questions: list[_Question] = []
        containers = ", ".join(self.selectors.question_containers)
        for kind, selectors in (
            ("select", self.selectors.select),
            ("combobox", self.selectors.combobox),
            ("textarea", self.selectors.textarea),
            ("text", self.selectors.text_input),
        ):
            for control in await page.query_selector_all(", ".join(selectors)):
                try:
                    if kind == "text" and await control.get_attribute("role") == "combobox":
                        continue
                    if not await control.is_visible():
                        continue
                    if not await control.evaluate(OUTSIDE_QUESTIONS_JS, containers):
                        continue
                    raw_label = await self._loose_label(page, control)
                    label = clean_label(raw_label)
                    if not label:
                        continue
                    container = await control.query_selector("xpath=..") or control
                except Exception:
                    logger.debug("%s: skipping unreadable %s control", self.name, kind, exc_info=True)
                    continue
                questions.append(_Question(container, label, raw_label, control, kind))
        return questions

    async def _loose_label(self, page: Any, control: Any) -> str:
        text = await control_label_text(page, control)
        if text:
            return text
        for attr in ("aria-label", "placeholder", "name"):
            value = await control.get_attribute(attr)
            if value:
                return collapse_whitespace(value)
        return ""

    async def _find_control(self, container: Any) -> tuple[Any | None, str]:
        for kind, selectors in (
            ("select", self.selectors.select),
            ("combobox", self.selectors.combobox),
            ("textarea", self.selectors.textarea),
            ("radio", self.selectors.radio),
            ("text", self.selectors.text_input),
        ):
            control = await find_first(container, selectors)
            if control is not None:
                return control, kind
        return None, ""

    async def _is_answered(self, question: _Question) -> bool:
        if question.kind == "select":
            return not await select_is_unset(question.control)
        if question.kind == "radio":
            for radio in await question.container.query_selector_all('input[type="radio"]'):
                if await radio.is_checked():
                    return True
            return False
        if question.kind == "combobox":
            chosen = await find_first(question.container, self.selectors.combobox_value)
            if chosen is not None and collapse_whitespace(await chosen.text_content()):
                return True
        return bool((await question.control.input_value()).strip())

    def _resolve_answer(
        self,
        ctx: ApplyContext,
        question: _Question,
        user_answers: dict[str, str],
        required: bool,
    ) -> tuple[str | bool | None, str]:
        """(answer, source). Source is one of user, authorization, profile:<field>, generic."""
        provided = user_answers.get(question.label.lower())
        if provided:
            return provided, "user"
        yes_no = authorization_answer(question.label, ctx.profile)
        if yes_no is not None:
            return yes_no, "authorization"
        match = match_label_to_profile(question.label, ctx.profile)
        if match is not None:
            return match.value, f"profile:{match.field}"
        if ctx.use_generic_answers and not required:
            generic = generate_generic_response(question.label)
            if generic:
                return generic, "generic"
        return None, ""

    async def _answer(self, ctx: ApplyContext, question: _Question, answer: str | bool, source: str) -> bool:
        control = question.control
        if question.kind == "radio":
            if isinstance(answer, bool):
                return await handle_yes_no_question(ctx.page, question.container, answer)
            return await handle_radio_group(ctx.page, question.container, answer)
        if question.kind == "select":
            if not isinstance(answer, bool):
                return await handle_dropdown(control, answer)
            # a status list ("U.S. Citizen", "H-1B Visa") takes the category, not yes/no
            if (
                source == "authorization"
                and ctx.profile.work_authorization is not None
                and is_work_authorization_label(question.label)
                and not await has_yes_no_options(control)
            ):
                return await handle_work_auth_dropdown(control, ctx.profile.work_authorization)
            return await select_yes_no_option(control, answer)

        text = ("Yes" if answer else "No") if isinstance(answer, bool) else answer
        if question.kind == "combobox":
            return await self._choose_combobox_option(ctx.page, control, text)
        if question.kind == "textarea":
            max_length = await control.get_attribute("maxlength")
            return await handle_textarea(control, text, int(max_length) if max_length else None)
        await control.fill(text)
        return True

    async def _choose_combobox_option(self, page: Any, control: Any, text: str) -> bool:
        await control.click()
        await control.fill(text)
        await human_pause(page, 200, 500)
        target = text.lower()
        for option in await find_all_first(page, self.selectors.combobox_option):
            option_text = collapse_whitespace(await option.text_content()).lower()
            if option_text and (option_text == target or target in option_text):
                await option.click()
                return True
        await page.keyboard.press("Escape")
        return False

    async def _fill_custom_questions(self, ctx: ApplyContext, state: RunState) -> None:
        user_answers = {clean_label(k).lower(): v for k, v in ctx.user_inputs.items()}
        for question in await self._questions(ctx.page):
            try:
                if await self._is_answered(question):
                    continue
                required = await is_required(question.control, question.raw_label)
                answer, source = self._resolve_answer(ctx, question, user_answers, required)
                if answer is None:
                    logger.debug("%s: leaving '%s' unanswered", self.name, question.label)
                    continue
                if await self._answer(ctx, question, answer, source):
                    state.filled += 1
                    if source == "generic":
                        state.generic_answers.append(question.label)
                    logger.debug("%s: answered '%s' from %s", self.name, question.label, source)
            except Exception:
                logger.warning("%s: failed to answer '%s'", self.name, question.label, exc_info=True)
                state.failed.append(question.label)

    # --- Pre-submit gate ---

    async def detect_unfilled_required_fields(self, page: Any) -> list[RequiredInput]:
        """Required questions still empty or at their placeholder option.

        Covers question containers and required controls placed directly
        on the form outside any container.
        """
        unfilled: list[RequiredInput] = []
        for question in await self._questions(page):
            if not await is_required(question.control, question.raw_label):
                continue
            if await self._is_answered(question):
                continue
            unfilled.append(await self._required_input(page, question))
        return unfilled

    async def _required_input(self, page: Any, question: _Question) -> RequiredInput:
        options: list[str] | None = None
        field_type = question.kind
        if question.kind == "select":
            options = [
                text for value, text in await select_options(question.control)
                if text and not is_placeholder_option(value, text)
            ]
        elif question.kind == "radio":
            options = []
            for radio in await question.container.query_selector_all('input[type="radio"]'):
                text = await control_label_text(page, radio) or await radio.get_attribute("value")
                if text:
                    options.append(text)
        elif question.kind == "combobox":
            field_type = "select"
            await question.control.click()
            options = [
                text
                for option in await find_all_first(page, self.selectors.combobox_option)
                if (text := collapse_whitespace(await option.text_content()))
            ]
            await page.keyboard.press("Escape")
        return RequiredInput(
            field_name=question.label,
            field_type=field_type,
            options=options,
            required=True,
        )

    # --- Outcome ---

    async def detect_outcome(self, page: Any, state: RunState) -> ApplyResult:
        """Classify the page shown after submit.

        Order: success copy, already-applied copy, visible validation
        errors, captcha copy, confirmation URL, then the assume-success
        fallback.
        """
        text = ((await page.text_content("body")) or "").lower()
        url = page.url.lower()

        for phrase in self.success_phrases:
            if phrase in text:
                return state.result(
                    ApplyStatus.SUCCEEDED,
                    confirmation_message="Application submitted successfully",
                )

        if any(phrase in text for phrase in ALREADY_APPLIED_PHRASES):
            return state.result(
                ApplyStatus.BLOCKED,
                error_code="ALREADY_APPLIED",
                error_message="Already applied to this position",
            )

        errors = await self._validation_errors(page)
        if errors:
            return state.result(
                ApplyStatus.FAILED,
                error_code="VALIDATION_ERROR",
                error_message=f"Form validation failed: {'; '.join(errors)}",
            )

        if "captcha" in text or any(phrase in text for phrase in CAPTCHA_PHRASES):
            return state.result(
                ApplyStatus.BLOCKED,
                error_code="CAPTCHA_DETECTED",
                error_message="CAPTCHA or human verification required",
            )

        if any(part in url for part in self.confirmation_url_parts):
            return state.result(
                ApplyStatus.SUCCEEDED,
                confirmation_message="Redirected to confirmation page",
            )

        if ASSUME_SUCCESS_WITHOUT_SIGNAL:
            return state.result(ApplyStatus.SUCCEEDED, confirmation_message="Application submitted")
        return state.result(
            ApplyStatus.FAILED,
            error_code="OUTCOME_UNKNOWN",
            error_message="No confirmation or error found after submit",
        )

    async def _validation_errors(self, page: Any) -> list[str]:
        texts: list[str] = []
        for selector in self.selectors.error_elements:
            for element in await page.query_selector_all(selector):
                if not await element.is_visible():
                    continue
                text = collapse_whitespace(await element.text_content())
                if text and text not in texts:
                    texts.append(text)
                if len(texts) >= MAX_ERROR_TEXTS:
                    return texts
        return texts

    # --- Helpers ---

    async def _screenshot(self, ctx: ApplyContext, state: RunState, name: str) -> None:
        path = ctx.screenshot_dir / f"{self.name.lower()}-{name}-{int(time.time() * 1000)}.png"
        try:
            await ctx.page.screenshot(path=str(path), full_page=False)
        except Exception:
            logger.warning("%s: screenshot '%s' failed", self.name, name, exc_info=True)
            return
        state.screenshots.append(str(path))
