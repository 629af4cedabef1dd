"""
Termin Watch - Captcha Resolvers

Image-to-text backends behind one small interface. Each failure is raised
as a distinct CaptchaSolveError subclass so the challenge loop can abort on
provider faults instead of burning its answer attempts.
"""

import base64
import logging
import time
from typing import Optional

import anthropic
import requests

from .config import DEFAULT_ANTHROPIC_MODEL, Settings
from .errors import (
    ConfigurationError,
    SolverCredentialsError,
    SolverQuotaError,
    SolverResponseError,
    SolverTransientError,
)

logger = logging.getLogger("TerminWatch.Solver")

ALLOWED_CHARS = set("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789")


def clean_answer(text: str) -> str:
    """Strip everything but alphanumerics; the site only uses those"""
    if not text:
        return ""
    text = text.strip().replace(" ", "")
    return "".join(c for c in text if c in ALLOWED_CHARS)


class CaptchaResolver:
    """Port for captcha image-to-text services"""

    name = "resolver"

    def solve(self, image_bytes: bytes, hint: Optional[str] = None) -> str:
        """
        Return the text shown in the image.

        Args:
            image_bytes: Raw image (PNG/JPEG)
            hint: Media type or provider recognition module

        Raises:
            CaptchaSolveError subclass on any provider failure
        """
        raise NotImplementedError


class CapSolverResolver(CaptchaResolver):
    """
    Handler for CapSolver API
    Docs: https://docs.capsolver.com/en/guide/recognition/ImageToTextTask/
    """

    name = "capsolver"
    API_URL = "https://api.capsolver.com/createTask"

    CREDENTIAL_ERRORS = {"ERROR_KEY_DENIED_ACCESS", "ERROR_INVALID_KEY", "ERROR_KEY_NOT_FOUND"}
    QUOTA_ERRORS = {"ERROR_ZERO_BALANCE", "ERROR_NO_SLOT_AVAILABLE", "ERROR_TOO_MANY_REQUESTS"}
    TRANSIENT_ERRORS = {"ERROR_SERVICE_UNAVALIABLE", "ERROR_INTERNAL_SERVER_ERROR"}

    def __init__(
        self,
        api_key: str,
        module: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ):
        if not api_key:
            raise ConfigurationError("CAPSOLVER_API_KEY is required for the capsolver provider")
        self.api_key = api_key
        self.module = module
        self.session = session or requests.Session()
        self.timeout = timeout

    def solve(self, image_bytes: bytes, hint: Optional[str] = None) -> str:
        if not image_bytes:
            raise SolverResponseError("Image data is required")

        task = {
            "type": "ImageToTextTask",
            "body": base64.b64encode(image_bytes).decode("utf-8"),
        }
        module = hint if hint and not hint.startswith("image/") else self.module
        if module:
            task["module"] = module

        payload = {"clientKey": self.api_key, "task": task}

        start_time = time.time()
        logger.info("[CapSolver] Sending request...")
        try:
            response = self.session.post(self.API_URL, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise SolverTransientError(f"CapSolver request failed: {e}") from e

        if response.status_code in (401, 403):
            raise SolverCredentialsError(f"CapSolver rejected credentials (HTTP {response.status_code})")
        if response.status_code == 429:
            raise SolverQuotaError("CapSolver rate limit exceeded (HTTP 429)")
        if response.status_code >= 500:
            raise SolverTransientError(f"CapSolver server error (HTTP {response.status_code})")
        if response.status_code != 200:
            raise SolverResponseError(f"CapSolver HTTP {response.status_code}: {response.text[:200]}")

        try:
            data = response.json()
        except ValueError as e:
            raise SolverResponseError(f"CapSolver returned invalid JSON: {e}") from e

        if data.get("errorId", 0) != 0:
            error_code = data.get("errorCode", "UNKNOWN")
            description = data.get("errorDescription", "")
            message = f"CapSolver error {data.get('errorId')}: {error_code} {description}".strip()
            if error_code in self.CREDENTIAL_ERRORS:
                raise SolverCredentialsError(message)
            if error_code in self.QUOTA_ERRORS:
                raise SolverQuotaError(message)
            if error_code in self.TRANSIENT_ERRORS:
                raise SolverTransientError(message)
            raise SolverResponseError(message)

        if data.get("status") != "ready":
            raise SolverResponseError(f"Unexpected response from CapSolver: status={data.get('status')}")

        solution = clean_answer((data.get("solution") or {}).get("text", ""))
        if not solution:
            raise SolverResponseError("CapSolver returned an empty solution")

        logger.info(f"[CapSolver] SOLVED in {time.time() - start_time:.2f}s: '{solution}'")
        return solution


class LocalOcrResolver(CaptchaResolver):
    """
    Offline solving with ddddocr.

    The image is enhanced first (grayscale, 2.5x upscale, CLAHE, Otsu
    threshold, morphological opening); the raw image tends to lose a
    character.
    """

    name = "ddddocr"

    def __init__(self, preprocess: bool = True):
        import ddddocr

        self.preprocess = preprocess
        self.ocr = ddddocr.DdddOcr(beta=True)
        logger.info("[OCR] ddddocr initialized (beta model)")

    @staticmethod
    def enhance(image_bytes: bytes) -> bytes:
        import cv2
        import numpy as np

        nparr = np.frombuffer(image_bytes, np.uint8)
        img = cv2.imdecode(nparr, cv2.IMREAD_COLOR)
        if img is None:
            raise SolverResponseError("Captcha image could not be decoded")

        gray = cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
        gray = cv2.resize(gray, None, fx=2.5, fy=2.5, interpolation=cv2.INTER_CUBIC)

        clahe = cv2.createCLAHE(clipLimit=2.0, tileGridSize=(8, 8))
        gray = clahe.apply(gray)

        _, thresh = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)

        kernel = np.ones((2, 2), np.uint8)
        opening = cv2.morphologyEx(thresh, cv2.MORPH_OPEN, kernel, iterations=1)

        ok, encoded = cv2.imencode(".png", opening)
        if not ok:
            raise SolverResponseError("Enhanced captcha image could not be encoded")
        return encoded.tobytes()

    def solve(self, image_bytes: bytes, hint: Optional[str] = None) -> str:
        if not image_bytes:
            raise SolverResponseError("Image data is required")

        data = self.enhance(image_bytes) if self.preprocess else image_bytes
        try:
            raw = self.ocr.classification(data)
        except Exception as e:
            raise SolverTransientError(f"ddddocr classification failed: {e}") from e

        result = clean_answer(raw).lower()
        if not result:
            raise SolverResponseError("ddddocr returned an empty result")

        logger.info(f"[OCR] Local OCR solved: '{result}'")
        return result


class AnthropicVisionResolver(CaptchaResolver):
    """
    Reads the captcha with a Claude vision model.

    The hint is used as the image media type when it looks like one;
    CapSolver module names are ignored here.
    """

    name = "claude"

    PROMPT = """You are an expert at reading distorted captcha text. This image contains a 6-character captcha code.

CRITICAL INSTRUCTIONS:
- The captcha is EXACTLY 6 characters long (letters and/or numbers)
- All letters are LOWERCASE (never uppercase)
- Common confusions to avoid:
  * The number "4" vs letter "A" - if it looks angular with crossing lines, it's "4"
  * The number "5" vs letter "S" - if it has a flat top and curved bottom, it's "5"
  * The letter "n" vs "m" - count the humps carefully
  * The letter "d" vs "a" - look for the vertical line on the right for "d"
  * The number "3" vs letter "e" - "3" has two curves, "e" is more circular
- Ignore any lines, noise, or distortions around the characters
- Return ONLY the 6 lowercase characters with no spaces, punctuation, or explanation

Example format: abc123

Now read the captcha and return exactly 6 characters:"""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_ANTHROPIC_MODEL,
        client: Optional[anthropic.Anthropic] = None,
        max_tokens: int = 1024,
    ):
        if not api_key and client is None:
            raise ConfigurationError("ANTHROPIC_API_KEY is required for the claude provider")
        self.model = model
        self.max_tokens = max_tokens
        self.client = client or anthropic.Anthropic(api_key=api_key)

    def solve(self, image_bytes: bytes, hint: Optional[str] = None) -> str:
        if not image_bytes:
            raise SolverResponseError("Image data is required")

        media_type = hint if hint and hint.startswith("image/") else "image/png"
        if media_type == "image/jpg":
            media_type = "image/jpeg"

        start_time = time.time()
        logger.info(f"[Claude] Sending {media_type} captcha to {self.model}...")
        try:
            message = self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "image",
                                "source": {
                                    "type": "base64",
                                    "media_type": media_type,
                                    "data": base64.b64encode(image_bytes).decode("utf-8"),
                                },
                            },
                            {"type": "text", "text": self.PROMPT},
                        ],
                    }
                ],
            )
        except anthropic.APIConnectionError as e:
            raise SolverTransientError(f"Anthropic API unreachable: {e}") from e
        except anthropic.APIStatusError as e:
            if e.status_code in (401, 403):
                raise SolverCredentialsError(f"Invalid Anthropic API key (HTTP {e.status_code})") from e
            if e.status_code == 429:
                raise SolverQuotaError("Rate limit exceeded on Anthropic API") from e
            if e.status_code >= 500:
                raise SolverTransientError(f"Anthropic API server error: {e}") from e
            raise SolverResponseError(f"Captcha solving failed: {e}") from e

        text = "".join(block.text for block in message.content if getattr(block, "type", None) == "text")
        solution = clean_answer(text).lower()
        if not solution:
            raise SolverResponseError("Claude returned an empty response")

        logger.info(f"[Claude] SOLVED in {time.time() - start_time:.2f}s: '{solution}'")
        return solution


def build_resolver(settings: Settings) -> CaptchaResolver:
    if settings.captcha_provider == "ddddocr":
        return LocalOcrResolver()
    if settings.captcha_provider == "claude":
        return AnthropicVisionResolver(settings.anthropic_api_key, model=settings.anthropic_model)
    return CapSolverResolver(settings.capsolver_api_key, module=settings.session.captcha_module_hint)
