"""
Playwright Probe

Probe implementation over a Playwright async Page, plus a small browser
session helper that launches Chromium and opens a page for it.
"""

import logging
from typing import Dict, Any, Optional

from playwright.async_api import (
    async_playwright,
    Page,
    Error as PlaywrightError,
    TimeoutError as PlaywrightTimeoutError,
)

from ..core.exceptions import ProbeUnavailable, CandidateInvalid
from ..core.probe import Probe, PageContext

# Configure logging
logger = logging.getLogger(__name__)


# Runs in the page; reports element facts in the shape signature.capture() expects
INSPECT_SCRIPT = """
(el) => {
    const attributes = {};
    for (const attr of el.attributes) {
        attributes[attr.name] = attr.value;
    }
    const rect = el.getBoundingClientRect();
    const styles = window.getComputedStyle(el);
    const parent = el.parentElement;

    let depth = 0;
    for (let node = el; node.parentElement; node = node.parentElement) {
        depth++;
    }

    const interactiveTags = ['button', 'a', 'input', 'select', 'textarea', 'details', 'summary'];
    const interactiveRoles = ['button', 'link', 'textbox', 'checkbox', 'radio', 'menuitem', 'tab'];
    const tag = el.tagName.toLowerCase();
    const isInteractive = interactiveTags.includes(tag)
        || interactiveRoles.includes(el.getAttribute('role'))
        || el.hasAttribute('onclick')
        || styles.cursor === 'pointer';
    const isVisible = styles.display !== 'none'
        && styles.visibility !== 'hidden'
        && styles.opacity !== '0'
        && el.offsetWidth > 0 && el.offsetHeight > 0;

    const pseudo = {};
    for (const which of ['before', 'after']) {
        const content = window.getComputedStyle(el, '::' + which).content;
        if (content && content !== 'none' && content !== 'normal') {
            pseudo[which] = content;
        }
    }

    const isFormControl = ['input', 'select', 'textarea', 'button'].includes(tag);
    const form = isFormControl ? {
        name: el.getAttribute('name'),
        input_type: el.getAttribute('type'),
        placeholder: el.getAttribute('placeholder'),
        form_id: el.form ? (el.form.id || null) : null,
        disabled: !!el.disabled,
        required: !!el.required,
        readonly: !!el.readOnly,
        valid: el.checkValidity ? el.checkValidity() : true
    } : null;

    return {
        tag_name: tag,
        text_content: (el.textContent || '').trim(),
        attributes: attributes,
        position: {x: rect.x, y: rect.y, width: rect.width, height: rect.height},
        parent_tag: parent ? parent.tagName.toLowerCase() : null,
        siblings_count: parent ? parent.children.length : 0,
        computed_styles: {
            display: styles.display,
            visibility: styles.visibility,
            opacity: styles.opacity,
            fontSize: styles.fontSize,
            color: styles.color,
            position: styles.position,
            zIndex: styles.zIndex,
            animationName: styles.animationName,
            transitionDuration: styles.transitionDuration
        },
        shadow_dom: {
            has_shadow_root: !!el.shadowRoot,
            mode: el.shadowRoot ? el.shadowRoot.mode : null,
            child_element_count: el.shadowRoot ? el.shadowRoot.childElementCount : 0,
            in_shadow_tree: el.getRootNode() instanceof ShadowRoot
        },
        aria: {
            role: el.getAttribute('role'),
            label: el.getAttribute('aria-label'),
            labelled_by: el.getAttribute('aria-labelledby'),
            described_by: el.getAttribute('aria-describedby'),
            controls: el.getAttribute('aria-controls'),
            owns: el.getAttribute('aria-owns'),
            expanded: el.getAttribute('aria-expanded'),
            selected: el.getAttribute('aria-selected'),
            checked: el.getAttribute('aria-checked'),
            disabled: el.getAttribute('aria-disabled'),
            hidden: el.getAttribute('aria-hidden')
        },
        structure: {
            depth: depth,
            children_count: el.children.length,
            is_interactive: isInteractive,
            is_visible: isVisible,
            sibling_index: parent ? Array.prototype.indexOf.call(parent.children, el) + 1 : null
        },
        form: form,
        pseudo_elements: pseudo,
        timestamp: new Date().toISOString()
    };
}
"""

CONTEXT_SCRIPT = """
() => {
    const frameworks = [];
    if (window.React || document.querySelector('[data-reactroot], [data-reactid]')) frameworks.push('react');
    if (window.angular || window.ng || document.querySelector('[ng-version]')) frameworks.push('angular');
    if (window.Vue || document.querySelector('[data-v-app]')) frameworks.push('vue');
    if (window.jQuery) frameworks.push('jquery');
    const dark = window.matchMedia && window.matchMedia('(prefers-color-scheme: dark)').matches;
    return {
        frameworks: frameworks,
        theme: document.documentElement.getAttribute('data-theme') || (dark ? 'dark' : 'light'),
        has_modals: document.querySelectorAll('[role="dialog"], .modal').length > 0,
        has_animations: document.getAnimations ? document.getAnimations().length > 0 : false,
        url: window.location.href,
        title: document.title,
        language: document.documentElement.lang || null,
        viewport: {width: window.innerWidth, height: window.innerHeight}
    };
}
"""

_CLOSED_MARKERS = ("has been closed", "target closed", "browser has disconnected", "connection closed")
_INVALID_MARKERS = (
    "is not a valid selector",
    "unexpected token",
    "unknown engine",
    "failed to parse",
    "syntaxerror",
    "unsupported token",
)


def _translate_error(error: PlaywrightError, selector: Optional[str] = None) -> Exception:
    """Map a Playwright error onto the healing error taxonomy"""
    message = str(error)
    lowered = message.lower()
    if any(marker in lowered for marker in _CLOSED_MARKERS):
        return ProbeUnavailable(message)
    if selector is not None and any(marker in lowered for marker in _INVALID_MARKERS):
        return CandidateInvalid(selector, message.splitlines()[0] if message else "")
    return error


class PlaywrightProbe(Probe):
    """Probe backed by a Playwright Page"""

    def __init__(self, page: Page):
        self.page = page

    async def inspect(self, handle) -> Dict[str, Any]:
        try:
            return await handle.evaluate(INSPECT_SCRIPT)
        except PlaywrightError as e:
            raise _translate_error(e)

    async def query(self, selector: str):
        try:
            return await self.page.query_selector(selector)
        except PlaywrightError as e:
            raise _translate_error(e, selector)

    async def wait_for(self, selector: str, timeout_ms: int):
        try:
            return await self.page.wait_for_selector(selector, timeout=timeout_ms, state="attached")
        except PlaywrightTimeoutError:
            return None
        except PlaywrightError as e:
            raise _translate_error(e, selector)

    async def page_context(self) -> PageContext:
        try:
            raw = await self.page.evaluate(CONTEXT_SCRIPT)
        except PlaywrightError as e:
            raise _translate_error(e)

        return PageContext(
            frameworks=list(raw.get("frameworks") or []),
            theme=raw.get("theme"),
            has_modals=bool(raw.get("has_modals")),
            has_animations=bool(raw.get("has_animations")),
            url=raw.get("url") or "",
            title=raw.get("title") or "",
            language=raw.get("language"),
            viewport=raw.get("viewport"),
        )


class PlaywrightSession:
    """
    Owns a Chromium browser and one page.

    Usage:
        async with PlaywrightSession(headless=True) as session:
            await session.goto("https://example.com")
            probe = session.probe
    """

    def __init__(self, headless: bool = True, viewport: Optional[Dict[str, int]] = None):
        self.headless = headless
        self.viewport = viewport or {"width": 1920, "height": 1080}
        self._playwright = None
        self.browser = None
        self.context = None
        self.page: Optional[Page] = None
        self.probe: Optional[PlaywrightProbe] = None

    async def start(self, url: Optional[str] = None) -> PlaywrightProbe:
        """Launch the browser, open a page and optionally navigate to url"""
        logger.info("Initializing Playwright browser...")
        self._playwright = await async_playwright().start()
        try:
            self.browser = await self._playwright.chromium.launch(headless=self.headless)
            self.context = await self.browser.new_context(viewport=self.viewport)
            self.page = await self.context.new_page()
        except Exception:
            await self.close()
            raise

        self.probe = PlaywrightProbe(self.page)
        if url:
            await self.goto(url)
        logger.info("Browser initialized")
        return self.probe

    async def goto(self, url: str):
        if self.page is None:
            raise ProbeUnavailable("Browser session is not started")
        logger.info(f"Navigating to {url}")
        await self.page.goto(url)

    async def close(self):
        """Close page, context, browser and Playwright, ignoring shutdown errors"""
        try:
            if self.page:
                await self.page.close()
            if self.context:
                await self.context.close()
            if self.browser:
                await self.browser.close()
            if self._playwright:
                await self._playwright.stop()
            logger.info("Browser closed")
        except Exception as e:
            logger.warning(f"Error during browser cleanup: {e}")
        finally:
            self.page = None
            self.context = None
            self.browser = None
            self._playwright = None
            self.probe = None

    async def __aenter__(self) -> "PlaywrightSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
