"""
Forensic capture for diagnostic (DEBUG) runs.

Writes page screenshots and HTML dumps under the evidence directory so a
failed or successful check can be inspected after the browser is gone.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from playwright.sync_api import Page

logger = logging.getLogger("TerminWatch.Diagnostic")


class ForensicMonitor:
    """
    Screenshot + HTML dumps keyed by a running operation id.

    Every method is best-effort: a failed capture is logged and never
    interrupts the check that asked for it.
    """

    def __init__(self, base_dir: str = "debug", enabled: bool = True):
        """
        Args:
            base_dir: Base directory for all diagnostic files
            enabled: Disabled monitors do nothing and create no directories
        """
        self.enabled = enabled
        self.base_dir = Path(base_dir)
        self.screenshot_dir = self.base_dir / "screenshots"
        self.html_dir = self.base_dir / "html"
        self.operation_counter = 0

        if not self.enabled:
            return

        for directory in (self.screenshot_dir, self.html_dir):
            directory.mkdir(parents=True, exist_ok=True)
        logger.info(f"🔍 Forensic capture ENABLED → {self.base_dir}")

    def _next_id(self) -> str:
        self.operation_counter += 1
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        return f"{timestamp}_{self.operation_counter:04d}"

    def capture(
        self,
        page: Page,
        operation: str,
        category: str = "general",
        save_screenshot: bool = True,
        save_html: bool = True,
    ) -> Dict[str, Any]:
        """
        Returns:
            dict with operation id and the paths written (None when skipped/failed)
        """
        if not self.enabled:
            return {}

        operation_id = self._next_id()
        result = {
            "operation_id": operation_id,
            "operation": operation,
            "category": category,
            "screenshot": None,
            "html": None,
        }

        if save_screenshot:
            screenshot_path = self.screenshot_dir / f"{category}_{operation_id}.png"
            try:
                page.screenshot(path=str(screenshot_path), full_page=True)
                result["screenshot"] = str(screenshot_path)
                logger.info(f"📸 [{operation_id}] Screenshot: {screenshot_path.name}")
            except Exception as e:
                logger.warning(f"⚠️ Screenshot failed: {e}")

        if save_html:
            html_path = self.html_dir / f"{category}_{operation_id}.html"
            try:
                html_path.write_text(page.content(), encoding="utf-8")
                result["html"] = str(html_path)
                logger.debug(f"📄 HTML dump: {html_path.name}")
            except Exception as e:
                logger.warning(f"⚠️ HTML dump failed: {e}")

        logger.info(f"🔍 [{operation_id}] {category.upper()}: {operation}")
        return result

    def error_capture(self, page: Page, error_msg: str) -> Dict[str, Any]:
        return self.capture(page, f"ERROR: {error_msg}", category="error")

    def save_image(self, image: bytes, category: str = "success") -> Optional[str]:
        """Persist an already-taken screenshot"""
        if not self.enabled or not image:
            return None
        path = self.screenshot_dir / f"{category}_{self._next_id()}.png"
        try:
            path.write_bytes(image)
        except OSError as e:
            logger.warning(f"⚠️ Screenshot save failed: {e}")
            return None
        logger.info(f"📸 Saved {category} screenshot: {path.name}")
        return str(path)
