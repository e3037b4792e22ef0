"""Greenhouse application adapter.

Greenhouse boards render one long form: profile fields, a resume upload,
then custom questions in ``.field`` containers. Country and work
authorization are usually selects, so they get dedicated handling on top
of the shared text-field pass.
"""

import logging
from typing import Any

from apply_worker.browser.actions import find_first, select_is_unset
from apply_worker.core.schemas import Profile
from apply_worker.platforms.base import ApplyContext, FormAdapter, RunState, StaticField
from apply_worker.platforms.field_mapper import (
    detect_field_type,
    handle_dropdown,
    handle_required_checkbox,
    handle_work_auth_dropdown,
)
from apply_worker.platforms.greenhouse import selectors as sel

logger = logging.getLogger(__name__)

COUNTRY_FALLBACKS = ["united states", "usa", "us"]
MAX_CONSENT_CHECKBOXES = 5


class GreenhouseAdapter(FormAdapter):
    hosts = ("greenhouse.io",)
    selectors = sel.FORM_SELECTORS
    static_fields = (
        StaticField("first_name", sel.FIRST_NAME, lambda p: p.first_name),
        StaticField("last_name", sel.LAST_NAME, lambda p: p.last_name or None),
        StaticField("email", sel.EMAIL, lambda p: p.email),
        StaticField("phone", sel.PHONE, lambda p: p.phone),
        StaticField("linkedin", sel.LINKEDIN, lambda p: p.linkedin_url),
        StaticField("github", sel.GITHUB, lambda p: p.github_url),
        StaticField("website", sel.WEBSITE, lambda p: p.website_url),
        StaticField("location", sel.LOCATION, lambda p: p.location or None),
        StaticField("city", sel.CITY, lambda p: p.location_city),
        StaticField("state", sel.STATE, lambda p: p.location_state),
    )
    success_phrases = (
        "thank you for applying",
        "application received",
        "successfully submitted",
        "application submitted",
        "thanks for applying",
        "we received your application",
        "your application has been submitted",
    )

    @property
    def name(self) -> str:
        return "Greenhouse"

    async def fill_site_fields(self, ctx: ApplyContext, state: RunState) -> None:
        await self._fill_country(ctx.page, ctx.profile, state)
        await self._fill_work_auth(ctx.page, ctx.profile, state)

        for _ in range(MAX_CONSENT_CHECKBOXES):
            if not await handle_required_checkbox(ctx.page, list(sel.CONSENT_PATTERNS)):
                break
            state.filled += 1

    async def _fill_country(self, page: Any, profile: Profile, state: RunState) -> None:
        if not profile.location_country:
            return
        control = await find_first(page, sel.COUNTRY)
        if control is None:
            return
        try:
            if await detect_field_type(control) == "select":
                if not await select_is_unset(control):
                    return
                filled = await handle_dropdown(control, profile.location_country, COUNTRY_FALLBACKS)
            elif (await control.input_value()).strip():
                return
            else:
                await control.fill(profile.location_country)
                filled = True
        except Exception:
            logger.warning("Greenhouse: country field failed", exc_info=True)
            state.failed.append("country")
            return
        if filled:
            state.filled += 1
        else:
            logger.info("Greenhouse: no country option matched '%s'", profile.location_country)

    async def _fill_work_auth(self, page: Any, profile: Profile, state: RunState) -> None:
        if profile.work_authorization is None:
            return
        select = await find_first(page, sel.WORK_AUTH)
        if select is None:
            return
        try:
            if not await select_is_unset(select):
                return
            if await handle_work_auth_dropdown(select, profile.work_authorization):
                state.filled += 1
        except Exception:
            logger.warning("Greenhouse: work authorization field failed", exc_info=True)
            state.failed.append("work_authorization")
