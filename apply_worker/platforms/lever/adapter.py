"""Lever application adapter.

Lever job pages link to a separate ``/apply`` page holding a short form:
full name, contact details, profile links, then custom questions.
"""

import logging

from apply_worker.browser.actions import wait_for_any
from apply_worker.platforms.base import FORM_WAIT_MS, ApplyContext, FormAdapter, StaticField
from apply_worker.platforms.lever import selectors as sel

logger = logging.getLogger(__name__)


class LeverAdapter(FormAdapter):
    hosts = ("lever.co",)
    selectors = sel.FORM_SELECTORS
    static_fields = (
        StaticField("full_name", sel.FULL_NAME, lambda p: p.full_name),
        StaticField("email", sel.EMAIL, lambda p: p.email),
        StaticField("phone", sel.PHONE, lambda p: p.phone),
        StaticField("linkedin", sel.LINKEDIN, lambda p: p.linkedin_url),
        StaticField("github", sel.GITHUB, lambda p: p.github_url),
        StaticField("portfolio", sel.PORTFOLIO, lambda p: p.website_url),
        StaticField("location", sel.LOCATION, lambda p: p.location or None),
    )
    success_phrases = (
        "thank you for applying",
        "application received",
        "successfully submitted",
        "application submitted",
        "thanks for applying",
        "your application has been received",
        "we got your application",
    )

    @property
    def name(self) -> str:
        return "Lever"

    async def navigate_to_form(self, ctx: ApplyContext) -> bool:
        if "/apply" in ctx.page.url:
            logger.debug("Lever: already on /apply page")
            return await wait_for_any(ctx.page, sel.FORM, timeout_ms=FORM_WAIT_MS) is not None
        return await super().navigate_to_form(ctx)
