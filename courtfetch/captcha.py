"""Detection of CAPTCHA images and solving them through services or by hand."""

from __future__ import annotations

import base64
import binascii
import logging
import os
import time
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, Optional, Union

import httpx
from bs4 import Tag

from .config import Config
from .logger import Logger
from .parser import Page, element_text

_IMAGE_SELECTOR = "img#captcha_image, img[id*='captcha'], img[src*='captcha']"
_INPUT_SELECTOR = (
    "input[name='captcha'], input[id*='captcha'], input[type='text'][placeholder*='captcha']"
)
_ERROR_SELECTOR = ".captcha-error, .error-message, span.error"

_TWOCAPTCHA_SUBMIT_URL = "http://2captcha.com/in.php"
_TWOCAPTCHA_RESULT_URL = "http://2captcha.com/res.php"
_ANTICAPTCHA_CREATE_URL = "https://api.anti-captcha.com/createTask"
_ANTICAPTCHA_RESULT_URL = "https://api.anti-captcha.com/getTaskResult"

_POLL_ATTEMPTS = 30
_POLL_INTERVAL = 3.0
_MANUAL_POLL_INTERVAL = 2.0
_IMAGE_FETCH_TIMEOUT = 10.0


class CaptchaError(Exception):
    """Raised when a CAPTCHA cannot be fetched or solved."""


def _json_or_empty(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


class CaptchaSolver:
    """Solves CAPTCHAs found on court pages.

    Solving services are tried first (2Captcha, then Anti-Captcha, as their API
    keys are set); failing those, the image is saved for someone to solve by hand.
    The HTTP client should be the one the pages were loaded with so that its
    cookies go along with the image request.
    """

    def __init__(
        self,
        config: Config,
        logger: Optional[Logger] = None,
        client: Optional[httpx.Client] = None,
        captcha_dir: Union[str, os.PathLike] = "./data/captchas",
        env: Optional[Mapping[str, str]] = None,
        manual_timeout: float = 60.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._config = config
        self._logger = logger or Logger(logging.getLogger("courtfetch.captcha"))
        self._client = client or httpx.Client()
        self._captcha_dir = Path(captcha_dir)
        self._env = env if env is not None else os.environ
        self._manual_timeout = manual_timeout
        self._sleep = sleep

    def find_captcha(self, page: Page) -> Optional[Tag]:
        """Return the CAPTCHA image element of the page, if there is one."""
        return page.element(_IMAGE_SELECTOR)

    def get_captcha_image(self, page: Page, img_src: str) -> bytes:
        """Return the image bytes from a data URI or by fetching its URL."""
        if img_src:
            if img_src.startswith("data:image"):
                parts = img_src.split(",")
                if len(parts) == 2:
                    try:
                        return base64.b64decode(parts[1], validate=True)
                    except (binascii.Error, ValueError):
                        pass
            if img_src.startswith(("http", "/")):
                url = img_src
                if url.startswith("/"):
                    url = "/".join(page.url.split("/")[:3]) + url
                return self._fetch_image(url)
        raise CaptchaError("failed to screenshot CAPTCHA: image source cannot be loaded")

    def _fetch_image(self, url: str) -> bytes:
        try:
            response = self._client.get(
                url,
                headers={"User-Agent": self._config.user_agent},
                timeout=_IMAGE_FETCH_TIMEOUT,
            )
        except httpx.HTTPError as exc:
            raise CaptchaError(f"failed to fetch CAPTCHA image: {exc}") from exc
        return response.content

    def solve(self, page: Page) -> Optional[str]:
        """Solve the page's CAPTCHA and return its text; None when the page has none."""
        image = self.find_captcha(page)
        if image is None:
            self._logger.debug("No CAPTCHA detected")
            return None

        self._logger.info("CAPTCHA detected, attempting to solve")
        try:
            image_data = self.get_captcha_image(page, image.get("src") or "")
        except CaptchaError as exc:
            raise CaptchaError(f"failed to get CAPTCHA image: {exc}") from exc

        text = ""
        services = (
            ("TWOCAPTCHA_API_KEY", "2Captcha", self.solve_with_2captcha),
            ("ANTICAPTCHA_API_KEY", "Anti-Captcha", self.solve_with_anticaptcha),
        )
        for env_key, service, solve_with in services:
            if text:
                break
            api_key = self._env.get(env_key, "")
            if not api_key:
                continue
            self._logger.debug(f"Attempting to solve CAPTCHA with {service}")
            try:
                text = solve_with(image_data, api_key)
            except CaptchaError as exc:
                self._logger.warn(f"{service} failed", error=str(exc))
                continue
            if text:
                self._logger.info(f"CAPTCHA solved successfully with {service}")
            else:
                self._logger.warn(f"{service} failed", error=None)

        if not text:
            captcha_id = f"captcha_{int(time.time())}"
            try:
                self.save_for_manual_solving(captcha_id, image_data)
            except OSError:
                pass
            else:
                self._logger.info("CAPTCHA saved for manual solving", id=captcha_id)
                try:
                    text = self.wait_for_manual_solution(captcha_id, self._manual_timeout)
                except CaptchaError:
                    text = ""

        if not text:
            raise CaptchaError("failed to solve CAPTCHA with all available methods")

        if page.element(_INPUT_SELECTOR) is None:
            raise CaptchaError("CAPTCHA input field not found")

        self._logger.debug("CAPTCHA text entered", length=len(text))
        return text

    def solve_with_2captcha(self, image_data: bytes, api_key: str) -> str:
        """Submit the image to 2Captcha and poll until it is solved."""
        form = {
            "key": api_key,
            "method": "base64",
            "body": base64.b64encode(image_data).decode("ascii"),
            "json": "1",
        }
        try:
            response = self._client.post(_TWOCAPTCHA_SUBMIT_URL, data=form)
        except httpx.HTTPError as exc:
            raise CaptchaError(f"failed to submit to 2captcha: {exc}") from exc
        try:
            submitted = response.json()
        except ValueError as exc:
            raise CaptchaError(f"failed to decode 2captcha response: {exc}") from exc
        if not isinstance(submitted, dict):
            raise CaptchaError("failed to decode 2captcha response: not an object")

        if submitted.get("status") != 1:
            raise CaptchaError(f"2captcha submission failed: {submitted.get('request', '')}")

        captcha_id = submitted.get("request", "")
        result_url = f"{_TWOCAPTCHA_RESULT_URL}?key={api_key}&action=get&id={captcha_id}&json=1"

        for _ in range(_POLL_ATTEMPTS):
            self._sleep(_POLL_INTERVAL)
            try:
                response = self._client.get(result_url)
            except httpx.HTTPError:
                continue
            result = _json_or_empty(response)
            request = str(result.get("request", ""))
            if result.get("status") == 1:
                return request
            if request != "CAPCHA_NOT_READY":
                raise CaptchaError(f"2captcha error: {request}")

        raise CaptchaError("2captcha timeout")

    def solve_with_anticaptcha(self, image_data: bytes, api_key: str) -> str:
        """Create an Anti-Captcha task for the image and poll for its result."""
        task = {
            "clientKey": api_key,
            "task": {
                "type": "ImageToTextTask",
                "body": base64.b64encode(image_data).decode("ascii"),
            },
        }
        try:
            response = self._client.post(_ANTICAPTCHA_CREATE_URL, json=task)
        except httpx.HTTPError as exc:
            raise CaptchaError(str(exc)) from exc
        try:
            created = response.json()
        except ValueError as exc:
            raise CaptchaError(str(exc)) from exc
        if not isinstance(created, dict):
            raise CaptchaError("anti-captcha response is not an object")

        error_id = created.get("errorId", 0)
        if error_id != 0:
            raise CaptchaError(f"anti-captcha error: {error_id}")
        task_id = created.get("taskId", 0)

        for _ in range(_POLL_ATTEMPTS):
            self._sleep(_POLL_INTERVAL)
            try:
                response = self._client.post(
                    _ANTICAPTCHA_RESULT_URL, json={"clientKey": api_key, "taskId": task_id}
                )
            except httpx.HTTPError:
                continue
            result = _json_or_empty(response)
            if result.get("status") == "ready":
                solution = result.get("solution")
                return str(solution.get("text", "")) if isinstance(solution, dict) else ""

        raise CaptchaError("anti-captcha timeout")

    def save_for_manual_solving(self, captcha_id: str, image_data: bytes) -> Path:
        """Write the image where a person can fetch it; return its path."""
        try:
            self._captcha_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            pass
        path = self._captcha_dir / f"{captcha_id}.png"
        path.write_bytes(image_data)
        return path

    def wait_for_manual_solution(self, captcha_id: str, timeout: float) -> str:
        """Wait for a solution file to appear; remove it and the image once read."""
        solution_file = self._captcha_dir / f"{captcha_id}.txt"
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            try:
                solution = solution_file.read_text().strip()
            except OSError:
                solution = ""
            if solution:
                for path in (solution_file, self._captcha_dir / f"{captcha_id}.png"):
                    try:
                        path.unlink()
                    except OSError:
                        pass
                return solution
            self._sleep(_MANUAL_POLL_INTERVAL)
        raise CaptchaError("timeout waiting for manual solution")

    def verify_success(self, page: Page) -> bool:
        """False when the page shows a CAPTCHA or "invalid" error message."""
        element = page.element(_ERROR_SELECTOR)
        if element is not None:
            text = element_text(element)
            lower = text.lower()
            if "captcha" in lower or "invalid" in lower:
                self._logger.warn("CAPTCHA error detected", error=text)
                return False
        return True