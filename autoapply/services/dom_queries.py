"""Rendered-surface queries.

The scripts below only collect structured data from the live document and tag
elements with ``data-autoapply-*`` attributes so they can be addressed by
selector afterwards. Every phrase list used to interpret that data lives here as
plain Python and is matched in Python, so the rules are testable without a page.
"""
import re
from typing import Any

APPLY_PHRASES = (
    "apply for this job",
    "apply to this job",
    "apply for the job",
    "apply for this position",
    "apply now",
    "apply today",
    "apply on company site",
    "submit application",
    "submit your application",
    "job/?id=",
    "application",
)
APPLY_EXACT = ("apply",)

SUBMIT_TEXT_PHRASES = ("submit", "apply now", "finish")
SUBMIT_ARIA_PHRASES = ("submit", "apply")

NEXT_STEP_PHRASES = ("save and continue", "continue", "next", "review")

CAPTCHA_HINT_PHRASES = (
    "g-recaptcha",
    "recaptcha",
    "captcha",
    "security code",
    "verify you are human",
    "i am not a robot",
)
CAPTCHA_SELECTORS = (
    'iframe[src*="captcha"]',
    'iframe[src*="recaptcha"]',
    'div[class*="captcha"]',
)
ERROR_BANNER_SELECTORS = (
    '[data-testid*="error"]',
    ".icl-Alert--danger",
    ".error",
)

EMBEDDED_URL_PREFERENCES = ("job/?id=", "apply", "application")

VERIFICATION_PHRASES = (
    "additional verification",
    "cloudflare",
    "verify you are human",
    "checking your browser",
)

FORM_READY_SELECTOR = 'form, input[type="file"]'

CLICK_ATTR = "data-autoapply-click"
CONTROL_ATTR = "data-autoapply-control"
BUTTON_ATTR = "data-autoapply-button"

_VISIBLE_JS = """
  const isVisible = (el) => {
    const style = window.getComputedStyle(el);
    if (style && (style.visibility === 'hidden' || style.display === 'none')) return false;
    const rect = el.getBoundingClientRect();
    return rect.width > 0 && rect.height > 0;
  };
  const clean = (text) => (text || '').replace(/\\s+/g, ' ').trim();
"""

QUERY_CLICKABLES = (
    """
(opts) => {
  const deep = !!(opts && opts.deep);
"""
    + _VISIBLE_JS
    + """
  const roots = [document];
  if (deep) {
    const walk = (root) => {
      root.querySelectorAll('*').forEach((el) => {
        if (el.shadowRoot) { roots.push(el.shadowRoot); walk(el.shadowRoot); }
      });
    };
    walk(document);
  }
  roots.forEach((root) => {
    root.querySelectorAll('[data-autoapply-click]').forEach((el) => el.removeAttribute('data-autoapply-click'));
  });
  const out = [];
  let index = 0;
  roots.forEach((root) => {
    root.querySelectorAll('a, button, [role="button"], input[type="submit"], input[type="button"]').forEach((el) => {
      el.setAttribute('data-autoapply-click', String(index));
      out.push({
        index,
        tag: (el.tagName || '').toLowerCase(),
        type: (el.getAttribute('type') || '').toLowerCase(),
        text: clean(el.textContent).slice(0, 200),
        aria: el.getAttribute('aria-label') || '',
        title: el.getAttribute('title') || '',
        value: el.value ? String(el.value) : '',
        href: el.href ? String(el.href) : (el.getAttribute('href') || ''),
        in_form: !!el.closest('form'),
        in_shadow: root !== document,
        visible: isVisible(el),
      });
      index += 1;
    });
  });
  return out;
}
"""
)

PAGE_HAS_FORM = "() => !!document.querySelector('form, input[type=\"file\"]')"

SCROLL_TO_TOP = "() => { window.scrollTo(0, 0); return true; }"

SCROLL_TO_BOTTOM = "() => { window.scrollTo(0, document.body ? document.body.scrollHeight : 0); return true; }"

QUERY_FRAMES = """
() => Array.from(document.querySelectorAll('iframe')).map((frame) => ({
  src: frame.src || '',
  title: frame.title || '',
}))
"""

QUERY_EMBEDDED_URLS = """
() => {
  const urls = [];
  const seen = new Set();
  const add = (url) => { if (url && !seen.has(url)) { seen.add(url); urls.push(url); } };
  const pattern = /https?:\\/\\/[^\\s"'<>]+/gi;
  document.querySelectorAll('script').forEach((script) => {
    const text = script.textContent || '';
    let match = null;
    while ((match = pattern.exec(text))) add(match[0]);
  });
  document.querySelectorAll('a[href]').forEach((anchor) => add(anchor.href));
  return { origin: window.location.origin, urls };
}
"""

QUERY_APPLY_FLOW = """
(boardHost) => ({
  modal: !!document.querySelector('[role="dialog"], .icl-Modal, [data-testid="apply-modal"]'),
  board_frame: Array.from(document.querySelectorAll('iframe')).some((frame) => (frame.src || '').includes(boardHost)),
  form: !!document.querySelector('form'),
})
"""

QUERY_CONTROLS = (
    """
() => {
"""
    + _VISIBLE_JS
    + """
  document.querySelectorAll('[data-autoapply-control]').forEach((el) => el.removeAttribute('data-autoapply-control'));
  const textById = (ids) => (ids || '').split(/\\s+/).map((id) => {
    const node = id ? document.getElementById(id) : null;
    return node ? clean(node.textContent) : '';
  }).filter(Boolean).join(' ');
  const labelFor = (el) => {
    if (el.id) {
      const label = document.querySelector(`label[for="${CSS.escape(el.id)}"]`);
      if (label) return clean(label.textContent);
    }
    const wrap = el.closest('label');
    return wrap ? clean(wrap.textContent) : '';
  };
  const questionFor = (el) => {
    const fieldset = el.closest('fieldset');
    const legend = fieldset ? fieldset.querySelector('legend') : null;
    if (legend) return clean(legend.textContent);
    const group = el.closest('[role="group"], [role="radiogroup"]');
    if (!group) return '';
    return clean(group.getAttribute('aria-label') || textById(group.getAttribute('aria-labelledby')));
  };
  const out = [];
  document.querySelectorAll('input, select, textarea').forEach((el, index) => {
    el.setAttribute('data-autoapply-control', String(index));
    const tag = el.tagName.toLowerCase();
    const type = tag === 'input' ? (el.getAttribute('type') || 'text').toLowerCase() : tag;
    let groupChecked = !!el.checked;
    if ((type === 'radio' || type === 'checkbox') && el.name) {
      groupChecked = Array.from(document.querySelectorAll(`input[name="${CSS.escape(el.name)}"]`)).some((node) => node.checked);
    }
    out.push({
      index,
      tag,
      type,
      name: el.getAttribute('name') || '',
      id: el.id || '',
      label: labelFor(el),
      aria_label: el.getAttribute('aria-label') || '',
      labelled_by: textById(el.getAttribute('aria-labelledby')),
      placeholder: el.getAttribute('placeholder') || '',
      legend: questionFor(el),
      value: el.value ? String(el.value) : '',
      checked: !!el.checked,
      group_checked: groupChecked,
      required: !!el.required || el.getAttribute('aria-required') === 'true',
      visible: type !== 'hidden' && isVisible(el),
      options: tag === 'select' ? Array.from(el.options).map((opt) => ({ text: clean(opt.textContent), value: opt.value })) : [],
    });
  });
  return out;
}
"""
)

SELECT_CONTROL_OPTION = """
({ index, value }) => {
  const el = document.querySelector(`[data-autoapply-control="${index}"]`);
  if (!el) return false;
  el.value = value;
  el.dispatchEvent(new Event('input', { bubbles: true }));
  el.dispatchEvent(new Event('change', { bubbles: true }));
  return el.value === value;
}
"""

CHECK_CONTROL = """
({ index }) => {
  const el = document.querySelector(`[data-autoapply-control="${index}"]`);
  if (!el) return false;
  if (!el.checked) el.click();
  if (!el.checked) {
    el.checked = true;
    el.dispatchEvent(new Event('change', { bubbles: true }));
  }
  return !!el.checked;
}
"""

QUERY_SUBMIT_SIGNALS = (
    """
({ captchaSelectors, errorSelectors }) => {
"""
    + _VISIBLE_JS
    + """
  document.querySelectorAll('[data-autoapply-button]').forEach((el) => el.removeAttribute('data-autoapply-button'));
  const buttons = [];
  document.querySelectorAll('button, input[type="submit"], [role="button"]').forEach((el, index) => {
    el.setAttribute('data-autoapply-button', String(index));
    buttons.push({
      index,
      text: clean(el.textContent || el.value),
      aria: el.getAttribute('aria-label') || '',
      visible: isVisible(el),
    });
  });
  const count = (selectors) => selectors.reduce((total, selector) => total + document.querySelectorAll(selector).length, 0);
  const requiredEmpty = Array.from(document.querySelectorAll('[required], [aria-required="true"]')).filter((el) => {
    const type = (el.getAttribute('type') || '').toLowerCase();
    if (type === 'hidden') return false;
    if (type === 'radio' || type === 'checkbox') {
      if (!el.name) return !el.checked;
      return !document.querySelector(`input[name="${CSS.escape(el.name)}"]:checked`);
    }
    return !String(el.value || '').trim();
  }).length;
  return {
    buttons,
    invalid_count: document.querySelectorAll('[aria-invalid="true"]').length,
    required_empty_count: requiredEmpty,
    captcha_count: count(captchaSelectors),
    error_banner_count: count(errorSelectors),
  };
}
"""
)

PAGE_TEXT = "() => (document.body ? document.body.innerText || '' : '').slice(0, 20000)"


def norm(value: Any) -> str:
    return re.sub(r"\s+", " ", str(value or "")).strip().lower()


def click_selector(index: int) -> str:
    return f'[{CLICK_ATTR}="{index}"]'


def control_selector(index: int) -> str:
    return f'[{CONTROL_ATTR}="{index}"]'


def button_selector(index: int) -> str:
    return f'[{BUTTON_ATTR}="{index}"]'


def contains_any(text: str, phrases: tuple[str, ...]) -> bool:
    lowered = norm(text)
    return any(phrase in lowered for phrase in phrases)


def clickable_blob(element: dict[str, Any]) -> str:
    return norm(
        " ".join(
            str(element.get(key) or "")
            for key in ("text", "aria", "title", "value", "href")
        )
    )


def is_apply_control(element: dict[str, Any]) -> bool:
    # A submit button that belongs to a form is the form's own submit, never an entry point.
    if element.get("in_form") and (element.get("type") == "submit" or element.get("tag") == "button"):
        if contains_any(element.get("text", ""), SUBMIT_TEXT_PHRASES):
            return False
    if norm(element.get("text")) in APPLY_EXACT or norm(element.get("aria")) in APPLY_EXACT:
        return True
    return contains_any(clickable_blob(element), APPLY_PHRASES)


def first_apply_control(elements: list[dict[str, Any]], *, visible_only: bool = True) -> dict[str, Any] | None:
    for element in elements:
        if visible_only and not element.get("visible", True):
            continue
        if is_apply_control(element):
            return element
    return None


def is_submit_button(button: dict[str, Any]) -> bool:
    return contains_any(button.get("text", ""), SUBMIT_TEXT_PHRASES) or contains_any(
        button.get("aria", ""), SUBMIT_ARIA_PHRASES
    )


def is_next_step_button(element: dict[str, Any]) -> bool:
    if is_submit_button({"text": element.get("text", ""), "aria": element.get("aria", "")}):
        return False
    text = norm(f"{element.get('text', '')} {element.get('aria', '')} {element.get('value', '')}")
    return any(re.search(rf"\b{re.escape(phrase)}\b", text) for phrase in NEXT_STEP_PHRASES)


def classify_apply_flow(snapshot: dict[str, Any]) -> str:
    if snapshot.get("modal"):
        return "modal-iframe" if snapshot.get("board_frame") else "modal"
    if snapshot.get("form"):
        return "inline-form"
    return "unknown"


def preferred_embedded_url(urls: list[str], origin: str, ats_hosts: tuple[str, ...] = ()) -> str | None:
    preferences = EMBEDDED_URL_PREFERENCES + tuple(ats_hosts)
    for url in urls:
        lowered = url.lower()
        if any(token in lowered for token in preferences):
            return url
    for url in urls:
        if origin and url.startswith(origin) and "job/?" in url:
            return url
    return None
