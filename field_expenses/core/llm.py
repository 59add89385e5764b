"""
AI-based extraction supporting multiple providers (OpenAI, Anthropic, etc.).

Receipts (photos, PDFs, XML/text invoices) and whole PDF statements are sent
to a multimodal model together with an instruction prompt. The reply is
expected to contain JSON but is treated as best-effort text.
"""

import base64
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Dict, List, Optional

from .config import AppConfig
from .models import ExpenseCategory, coerce_category
from .parsers import extract_json_block, fallback_fields, parse_date
from .retry import RetryPolicy
from .utils import parse_br_amount, today_iso


class LLMProvider(str, Enum):
    """Supported extraction providers."""
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    AZURE_OPENAI = "azure-openai"
    LOCAL = "local"


# Default models for each provider
DEFAULT_MODELS = {
    LLMProvider.ANTHROPIC: "claude-3-5-haiku-20241022",
    LLMProvider.OPENAI: "gpt-4o-mini",
    LLMProvider.AZURE_OPENAI: "gpt-4o-mini",
    LLMProvider.LOCAL: "tesseract",
}

PARTIAL_READ_NOTE = "Leitura parcial (Confirmar dados)"
NO_TRANSACTIONS_MESSAGE = "AI could not find transactions in the document"


class ExtractionError(Exception):
    """The extraction service could not produce a result."""


class ExtractionAuthError(ExtractionError):
    """The extraction service rejected our credentials; retrying will not help."""


@dataclass
class ReceiptExtraction:
    """Best-effort receipt fields. ``partial`` marks a regex fallback read."""
    date: str
    amount: float
    city: str = ""
    category: str = ExpenseCategory.REFEICAO.value
    notes: str = ""
    partial: bool = False

    def to_dict(self) -> Dict:
        """Convert to dictionary."""
        return asdict(self)


def receipt_prompt() -> str:
    categories = ", ".join(c.value for c in ExpenseCategory)
    return f"""Analyze this document (Brazilian invoice, "nota fiscal" or receipt).
Answer with ONLY one valid JSON object. Do not use markdown.

Required fields:
{{
  "amount": (float, e.g. 10.50. Look for the TOTAL amount to pay),
  "date": (string "YYYY-MM-DD". If unreadable, use "{today_iso()}"),
  "city": (string. City of the establishment),
  "category": (string. Best match from this list: [{categories}]),
  "notes": (string. Establishment name and main items)
}}"""


STATEMENT_PROMPT = """This PDF is a toll/parking or card statement.
List every charge it contains.
Answer with ONLY a JSON array, no markdown and no explanation:
[
  {"date": "YYYY-MM-DD", "city": "establishment and location", "amount": 12.30, "category": "Pedágio"}
]
Use "Pedágio" for tolls, "Estacionamento" for parking and "Taxas" otherwise."""


def _status_code(exc: BaseException) -> Optional[int]:
    code = getattr(exc, "status_code", None)
    if code is None:
        response = getattr(exc, "response", None)
        code = getattr(response, "status_code", None)
    return code if isinstance(code, int) else None


def is_auth_error(exc: BaseException) -> bool:
    return _status_code(exc) in (401, 403)


def is_transient_error(exc: BaseException) -> bool:
    """Connection problems, timeouts, rate limits and server-side errors."""
    code = _status_code(exc)
    if code is not None:
        return code in (408, 409, 429) or code >= 500

    import anthropic
    import httpx
    import openai
    return isinstance(exc, (httpx.TransportError, openai.APIConnectionError,
                            anthropic.APIConnectionError))


def normalize_receipt_payload(data: Dict) -> ReceiptExtraction:
    """Coerce a parsed JSON answer into typed receipt fields."""
    amount = parse_br_amount(data.get("amount"))
    raw_date = str(data.get("date") or "")
    category = coerce_category(data.get("category") or ExpenseCategory.REFEICAO.value)
    return ReceiptExtraction(
        date=parse_date(raw_date) or today_iso(),
        amount=amount if amount is not None else 0.0,
        city=str(data.get("city") or "").strip(),
        category=getattr(category, "value", category),
        notes=str(data.get("notes") or "").strip(),
    )


def parse_receipt_response(text: str) -> ReceiptExtraction:
    """Parse the model answer, degrading to regex extraction when it is not JSON."""
    data = extract_json_block(text, "object")
    if isinstance(data, dict):
        return normalize_receipt_payload(data)

    print("[WARN] Extraction answer is not valid JSON, using regex fallback")
    fallback = fallback_fields(text)
    return ReceiptExtraction(
        date=fallback["date"],
        amount=fallback["amount"],
        category=ExpenseCategory.REFEICAO.value,
        notes=PARTIAL_READ_NOTE,
        partial=True,
    )


def parse_statement_response(text: str) -> Optional[List[Dict]]:
    """Return the list of entries in a statement answer, or None if there is none."""
    data = extract_json_block(text, "array")
    if not isinstance(data, list):
        return None
    return [e for e in data if isinstance(e, dict)]


class ReceiptExtractor:
    """Send receipts and statements to an extraction provider."""

    def __init__(self, provider: str = "openai", model: Optional[str] = None,
                 config: Optional[AppConfig] = None, client=None,
                 retry: Optional[RetryPolicy] = None):
        """
        Initialize the extractor.

        Args:
            provider: "openai", "anthropic", "azure-openai" or "local"
            model: Model name (uses default for provider if not specified)
            config: Application config holding API keys; SDK defaults
                (environment variables) apply when a key is missing
            client: Pre-built SDK client, mainly for tests
            retry: Retry policy for transient failures
        """
        try:
            self.provider = LLMProvider(provider)
        except ValueError:
            raise ValueError(f"Unsupported LLM provider: {provider}")
        self.model = model or DEFAULT_MODELS[self.provider]
        self.config = config or AppConfig()
        self._client = client
        self.retry = retry or RetryPolicy(max_attempts=3, delay=1.0,
                                          give_up=lambda e: not is_transient_error(e))

    # -- clients -----------------------------------------------------------

    def client(self):
        """Get or create the SDK client (lazy initialization)."""
        if self._client is None:
            if self.provider == LLMProvider.ANTHROPIC:
                import anthropic
                self._client = anthropic.Anthropic(api_key=self.config.anthropic_api_key)
            elif self.provider == LLMProvider.OPENAI:
                import openai
                self._client = openai.OpenAI(api_key=self.config.openai_api_key)
            elif self.provider == LLMProvider.AZURE_OPENAI:
                import openai
                self._client = openai.AzureOpenAI(
                    api_key=self.config.azure_openai_api_key,
                    api_version=self.config.azure_openai_api_version,
                    azure_endpoint=self.config.azure_openai_endpoint,
                )
        return self._client

    # -- provider calls ----------------------------------------------------

    def _call_anthropic(self, data: bytes, media_type: str, prompt: str, max_tokens: int) -> str:
        b64 = base64.b64encode(data).decode("ascii")
        if media_type.startswith("image/"):
            part = {"type": "image", "source": {"type": "base64", "media_type": media_type, "data": b64}}
        elif media_type == "application/pdf":
            part = {"type": "document", "source": {"type": "base64", "media_type": media_type, "data": b64}}
        else:
            part = {"type": "text", "text": data.decode("utf-8", errors="replace")}

        response = self.client().messages.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=0.0,
            messages=[{"role": "user", "content": [part, {"type": "text", "text": prompt}]}],
        )
        return response.content[0].text.strip()

    def _call_openai(self, data: bytes, media_type: str, prompt: str, max_tokens: int,
                     json_object: bool) -> str:
        data_uri = f"data:{media_type};base64,{base64.b64encode(data).decode('ascii')}"
        if media_type.startswith("image/"):
            part = {"type": "image_url", "image_url": {"url": data_uri}}
        elif media_type == "application/pdf":
            part = {"type": "file", "file": {"filename": "document.pdf", "file_data": data_uri}}
        else:
            part = {"type": "text", "text": data.decode("utf-8", errors="replace")}

        kwargs = {}
        if json_object:
            kwargs["response_format"] = {"type": "json_object"}
        response = self.client().chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": [part, {"type": "text", "text": prompt}]}],
            max_tokens=max_tokens,
            temperature=0.0,
            **kwargs,
        )
        return (response.choices[0].message.content or "").strip()

    def _call_local(self, data: bytes, media_type: str) -> str:
        from .ocr import ocr_image_to_text, pdf_to_text, pdf_first_page_to_png

        if media_type.startswith("image/"):
            return ocr_image_to_text(data)
        if media_type == "application/pdf":
            text = pdf_to_text(data)
            if not text.strip():
                text = ocr_image_to_text(pdf_first_page_to_png(data))
            return text
        return data.decode("utf-8", errors="replace")

    def complete(self, data: bytes, media_type: str, prompt: str,
                 max_tokens: int = 500, json_object: bool = True) -> str:
        """
        Send one document and an instruction, returning the raw answer text.

        Raises:
            ExtractionAuthError: credentials rejected (401/403), not retried
            ExtractionError: any other failure once retries are exhausted
        """
        def call():
            if self.provider == LLMProvider.ANTHROPIC:
                return self._call_anthropic(data, media_type, prompt, max_tokens)
            if self.provider in (LLMProvider.OPENAI, LLMProvider.AZURE_OPENAI):
                return self._call_openai(data, media_type, prompt, max_tokens, json_object)
            return self._call_local(data, media_type)

        try:
            return self.retry.call(call, label=f"{self.provider.value} extraction")
        except Exception as e:
            if is_auth_error(e):
                raise ExtractionAuthError(
                    f"{self.provider.value} rejected the credentials ({e}). "
                    f"Check the API key in your configuration."
                ) from e
            raise ExtractionError(f"{self.provider.value} extraction failed: {e}") from e

    # -- public API --------------------------------------------------------

    def extract(self, data: bytes, media_type: str = "image/jpeg") -> ReceiptExtraction:
        """Read date, amount, city, category and notes from a receipt."""
        text = self.complete(data, media_type, receipt_prompt())
        return parse_receipt_response(text)

    def extract_statement(self, pdf: bytes) -> Optional[List[Dict]]:
        """Ask for the list of charges in a PDF statement; None when the answer has none."""
        text = self.complete(pdf, "application/pdf", STATEMENT_PROMPT,
                             max_tokens=4000, json_object=False)
        return parse_statement_response(text)


def build_extractor(config: AppConfig, provider: Optional[str] = None,
                    model: Optional[str] = None) -> ReceiptExtractor:
    """Create an extractor from configuration."""
    return ReceiptExtractor(provider=provider or config.llm_provider,
                            model=model or config.llm_model,
                            config=config)
