"""
Scan execution engine.

Drives one headless Chrome session to the target, waits for the page to
settle, runs axe-core against it and hands the violations to the result
deriver. Runs synchronously (Selenium is blocking); the pipeline calls it from
a worker thread and bounds it with its own wall-clock ceiling.
"""
import time
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.chrome.webdriver import WebDriver
from selenium.webdriver.support.ui import WebDriverWait

from app.features.scan.schemas.issue import DerivedResult
from app.features.scan.services.analysis.result_deriver import ResultDeriver
from app.features.scan.services.engine.browser import BrowserFactory
from app.platform.config import settings
from app.platform.logger import get_logger

logger = get_logger(__name__)

AXE_TAGS = ["wcag2a", "wcag2aa", "wcag21a", "wcag21aa", "wcag22aa", "best-practice"]

# Symptoms of the page navigating again while axe was running
RETRYABLE_MARKERS = (
    "execution context was destroyed",
    "cannot find context with specified id",
    "no such execution context",
    "target closed",
    "target frame detached",
    "frame was detached",
    "inspected target navigated or closed",
    "document unloaded while waiting for result",
)

NAVIGATION_LOOP_MESSAGE = "Site keeps redirecting during scan. Try scanning the final URL or retry."

AXE_PRESENT_SCRIPT = "return !!(window.axe && typeof window.axe.run === 'function');"

# Node payloads are reduced to their selector path inside the page; html and
# text content never leave the browser.
AXE_RUN_SCRIPT = """
const tags = arguments[0];
const done = arguments[arguments.length - 1];
if (!window.axe || typeof window.axe.run !== 'function') {
  done({error: 'axe-core is not available in the page'});
  return;
}
window.axe.run(document, {runOnly: {type: 'tag', values: tags}, resultTypes: ['violations']})
  .then(function (result) {
    done({
      version: (result.testEngine && result.testEngine.version) || 'unknown',
      violations: result.violations.map(function (v) {
        return {
          id: v.id,
          impact: v.impact,
          tags: v.tags,
          nodes: v.nodes.map(function (n) { return {target: n.target}; })
        };
      })
    });
  })
  .catch(function (err) { done({error: String((err && err.message) || err)}); });
"""

NAVIGATION_STATUS_SCRIPT = """
const entries = performance.getEntriesByType('navigation');
return entries.length && entries[0].responseStatus ? entries[0].responseStatus : null;
"""


class ScanError(Exception):
    """Fatal scan failure with an HTTP-style status and a machine-readable cause."""

    def __init__(
        self,
        message: str,
        status_code: int = 502,
        failure_code: str = "unknown",
        attempted_urls: Optional[List[str]] = None,
        final_url: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.failure_code = failure_code
        self.attempted_urls = list(attempted_urls or [])
        self.final_url = final_url


class AxeInvocationError(Exception):
    """A single failed axe run; the retry loop decides whether it is fatal."""


@dataclass
class ScanResult:
    derived: DerivedResult
    axe_version: str
    final_url: str
    attempted_urls: List[str]
    timings: Dict[str, int] = field(default_factory=dict)
    attempts: int = 1


def is_retryable(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in RETRYABLE_MARKERS)


def classify_failure(message: str) -> Tuple[str, int]:
    """Map a browser error message to (failure_code, status_code)."""
    lowered = message.lower()
    if "err_name_not_resolved" in lowered or "err_name_resolution_failed" in lowered:
        return "dns_failed", 502
    if "err_cert" in lowered or "err_ssl" in lowered or "ssl" in lowered:
        return "tls_error", 502
    if "err_too_many_redirects" in lowered:
        return "navigation_loop", 502
    if (
        "err_connection" in lowered
        or "err_blocked" in lowered
        or "err_address_unreachable" in lowered
        or "err_empty_response" in lowered
        or "refused" in lowered
    ):
        return "blocked_or_refused", 502
    if "timeout" in lowered or "timed out" in lowered:
        return "timeout", 504
    if "err_http_response_code_failure" in lowered or "err_invalid_response" in lowered:
        return "http_error", 502
    return "unknown", 502


@lru_cache(maxsize=4)
def load_axe_source(path: str) -> str:
    source_path = Path(path)
    if not source_path.is_file():
        raise ScanError(
            f"axe-core source not found at {path}. Install axe-core or set AXE_SOURCE_PATH.",
            status_code=500,
        )
    source = source_path.read_text(encoding="utf-8")
    if len(source) < 1000:
        raise ScanError(f"axe-core source at {path} looks invalid ({len(source)} bytes).", status_code=500)
    return source


def _short(message: str, limit: int = 200) -> str:
    return " ".join(message.split())[:limit]


class AxeScanEngine:
    def __init__(
        self,
        driver_factory: Callable[[], WebDriver] = BrowserFactory.create_driver,
        axe_source: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.driver_factory = driver_factory
        self._axe_source = axe_source
        self.sleep = sleep
        self.clock = clock

    @property
    def axe_source(self) -> str:
        if self._axe_source is None:
            self._axe_source = load_axe_source(settings.AXE_SOURCE_PATH)
        return self._axe_source

    def run(self, url: str, domain: str, allow_http_fallback: bool = False) -> ScanResult:
        """
        Scan one page. Raises ScanError on any fatal failure; the browser is
        always released.
        """
        started = self.clock()
        deadline = started + settings.SCAN_TIMEOUT_SECONDS
        attempted: List[str] = []
        driver: Optional[WebDriver] = None
        # resolve the axe source before paying for a browser launch
        axe_source = self.axe_source

        try:
            try:
                driver = self.driver_factory()
            except WebDriverException as exc:
                raise ScanError(f"Could not start the browser: {_short(exc.msg or str(exc))}", status_code=500)

            nav_started = self.clock()
            final_url = self._navigate(driver, url, domain, attempted, allow_http_fallback, deadline)
            nav_ms = int((self.clock() - nav_started) * 1000)
            logger.info(f"[scanner] {domain}: navigated in {nav_ms}ms")

            self._check_deadline(deadline, "page load", attempted, final_url)
            final_url = self._wait_for_stability(driver, deadline) or final_url
            self._check_deadline(deadline, "page load", attempted, final_url)

            axe_started = self.clock()
            payload, attempts = self._run_axe_with_retry(driver, axe_source, deadline, attempted)
            axe_ms = int((self.clock() - axe_started) * 1000)

            derived = ResultDeriver.derive(payload.get("violations") or [])
            total_ms = int((self.clock() - started) * 1000)
            logger.info(
                f"[scanner] {domain}: {len(derived.issues)} violations, score={derived.score}, "
                f"axe {axe_ms}ms, total {total_ms}ms"
            )

            return ScanResult(
                derived=derived,
                axe_version=str(payload.get("version") or "unknown"),
                final_url=self._current_url(driver) or final_url,
                attempted_urls=attempted,
                timings={"total_ms": total_ms, "nav_ms": nav_ms, "axe_ms": axe_ms},
                attempts=attempts,
            )
        except ScanError:
            raise
        except TimeoutException as exc:
            raise ScanError(
                f"Scan of {domain} timed out: {_short(exc.msg or str(exc))}",
                status_code=504,
                failure_code="timeout",
                attempted_urls=attempted,
            )
        except WebDriverException as exc:
            message = exc.msg or str(exc)
            failure_code, status_code = classify_failure(message)
            raise ScanError(
                f"Scan of {domain} failed: {_short(message)}",
                status_code=status_code,
                failure_code=failure_code,
                attempted_urls=attempted,
            )
        finally:
            if driver is not None:
                try:
                    driver.quit()
                except WebDriverException as exc:
                    logger.warning(f"[scanner] Browser quit failed for {domain}: {exc!r}")

    def _check_deadline(self, deadline: float, stage: str, attempted: List[str], final_url: Optional[str]):
        if self.clock() > deadline:
            raise ScanError(
                f"Scan timed out during {stage}.",
                status_code=504,
                failure_code="timeout",
                attempted_urls=attempted,
                final_url=final_url,
            )

    def _navigate(
        self,
        driver: WebDriver,
        url: str,
        domain: str,
        attempted: List[str],
        allow_http_fallback: bool,
        deadline: float,
    ) -> str:
        candidates = [url]
        if allow_http_fallback and url.startswith("https://"):
            candidates.append("http://" + url[len("https://"):])

        last_error: Optional[ScanError] = None
        for index, candidate in enumerate(candidates):
            self._check_deadline(deadline, "navigation", attempted, None)
            # a navigation may never outlive the scan ceiling
            driver.set_page_load_timeout(max(1.0, min(settings.NAV_TIMEOUT_SECONDS, deadline - self.clock())))
            attempted.append(candidate)
            try:
                driver.get(candidate)
            except TimeoutException:
                raise ScanError(
                    f"Timed out loading {domain} after {settings.NAV_TIMEOUT_SECONDS:g}s.",
                    status_code=504,
                    failure_code="timeout",
                    attempted_urls=attempted,
                    final_url=candidate,
                )
            except WebDriverException as exc:
                message = exc.msg or str(exc)
                failure_code, status_code = classify_failure(message)
                last_error = ScanError(
                    f"Could not load {domain}: {_short(message)}",
                    status_code=status_code,
                    failure_code=failure_code,
                    attempted_urls=attempted,
                    final_url=candidate,
                )
                has_fallback = index + 1 < len(candidates)
                if has_fallback and failure_code in ("blocked_or_refused", "tls_error"):
                    logger.info(f"[scanner] {domain}: {candidate} failed ({failure_code}), trying http")
                    continue
                raise last_error

            self._check_response_status(driver, domain, attempted, candidate)
            return candidate

        raise last_error

    def _check_response_status(self, driver: WebDriver, domain: str, attempted: List[str], url: str) -> None:
        try:
            status = driver.execute_script(NAVIGATION_STATUS_SCRIPT)
        except WebDriverException as exc:
            # the status probe is advisory; a page that navigated away still gets scanned
            logger.info(f"[scanner] {domain}: response status unavailable ({exc.msg or exc})")
            return

        if not isinstance(status, int) or status < 400:
            return

        failure_code = "blocked_or_refused" if status in (401, 403, 429) else "http_error"
        raise ScanError(
            f"{domain} responded with HTTP {status}.",
            status_code=502,
            failure_code=failure_code,
            attempted_urls=attempted,
            final_url=url,
        )

    def _current_url(self, driver: WebDriver) -> Optional[str]:
        try:
            return driver.current_url
        except WebDriverException:
            return None

    def _wait_for_stability(self, driver: WebDriver, deadline: float) -> Optional[str]:
        """
        Best effort: give client-side redirects a moment to land, then wait for
        document readiness. Never fails the scan on its own.
        """
        before = self._current_url(driver)
        self.sleep(settings.HYDRATION_DELAY_SECONDS)
        after = self._current_url(driver)
        if before and after and before != after:
            logger.info(f"[scanner] Redirect in flight: {before} -> {after}")
            self.sleep(settings.HYDRATION_DELAY_SECONDS)
            after = self._current_url(driver) or after

        remaining = deadline - self.clock()
        timeout = max(0.0, min(settings.READY_STATE_TIMEOUT_SECONDS, remaining))
        if timeout <= 0:
            return after

        try:
            WebDriverWait(driver, timeout, poll_frequency=0.2).until(
                lambda d: d.execute_script("return document.readyState") in ("interactive", "complete")
            )
        except TimeoutException:
            logger.info("[scanner] Document not ready in time, scanning anyway")
        except WebDriverException as exc:
            message = exc.msg or str(exc)
            if not is_retryable(message):
                raise
            logger.info(f"[scanner] Page navigated during readiness wait: {_short(message)}")

        return self._current_url(driver) or after

    def _invoke_axe(self, driver: WebDriver, axe_source: str) -> Dict[str, Any]:
        try:
            if not driver.execute_script(AXE_PRESENT_SCRIPT):
                driver.execute_script(axe_source)
            result = driver.execute_async_script(AXE_RUN_SCRIPT, AXE_TAGS)
        except WebDriverException as exc:
            raise AxeInvocationError(exc.msg or str(exc))

        if not isinstance(result, dict):
            raise AxeInvocationError(f"Unexpected axe result: {type(result).__name__}")
        if result.get("error"):
            raise AxeInvocationError(str(result["error"]))
        return result

    def _run_axe_with_retry(
        self,
        driver: WebDriver,
        axe_source: str,
        deadline: float,
        attempted: List[str],
    ) -> Tuple[Dict[str, Any], int]:
        """
        (attempt, last_error) -> retry | fatal | success.

        Only page-lifecycle errors are retried; anything else fails immediately.
        """
        max_attempts = max(1, settings.AXE_MAX_ATTEMPTS)
        last_message = ""

        for attempt in range(1, max_attempts + 1):
            self._check_deadline(deadline, "accessibility analysis", attempted, self._current_url(driver))

            remaining = deadline - self.clock()
            driver.set_script_timeout(max(1.0, remaining))

            try:
                return self._invoke_axe(driver, axe_source), attempt
            except AxeInvocationError as exc:
                last_message = str(exc)

            if not is_retryable(last_message):
                failure_code, status_code = classify_failure(last_message)
                if failure_code != "timeout":
                    failure_code, status_code = "unknown", 500
                raise ScanError(
                    f"Accessibility analysis failed: {_short(last_message)}",
                    status_code=status_code,
                    failure_code=failure_code,
                    attempted_urls=attempted,
                    final_url=self._current_url(driver),
                )

            logger.warning(
                f"[scanner] axe attempt {attempt}/{max_attempts} interrupted by navigation: "
                f"{_short(last_message, 120)}"
            )
            if attempt < max_attempts:
                self.sleep(settings.AXE_RETRY_BACKOFF_SECONDS * attempt)
                self._wait_for_stability(driver, deadline)

        final_url = self._current_url(driver)
        raise ScanError(
            f"{NAVIGATION_LOOP_MESSAGE} The page kept navigating (repeated navigation/redirect) "
            f"after {max_attempts} attempts. Last URL: {final_url or 'unknown'}. "
            f"Last error: {_short(last_message, 120)}",
            status_code=502,
            failure_code="navigation_loop",
            attempted_urls=attempted,
            final_url=final_url,
        )
