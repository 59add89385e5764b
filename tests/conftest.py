import base64
from types import SimpleNamespace

import pytest

from field_expenses.core.database import SQLiteTransactionStore
from field_expenses.core.llm import ReceiptExtraction
from field_expenses.core.processor import ExpenseTracker

CSV_HEADER = ("Data de Utilizacao;Nome do Estabelecimento;Endereco do Estabelecimento;"
              "Valor Cobrado;Tipo de Transacao")


class StatusError(Exception):
    """Stands in for SDK errors that carry an HTTP status."""

    def __init__(self, status_code, message="api error"):
        super().__init__(f"{status_code} {message}")
        self.status_code = status_code


class FakeCompletions:
    """``client.chat.completions`` of an OpenAI-style SDK client."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        message = SimpleNamespace(content=outcome)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def fake_openai_client(*outcomes):
    completions = FakeCompletions(outcomes)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


class FakeExtractor:
    """Extractor double returning canned results."""

    def __init__(self, extraction=None, statement=None, error=None):
        self.extraction = extraction
        self.statement = statement
        self.error = error
        self.calls = []

    def extract(self, data, media_type="image/jpeg"):
        self.calls.append(("extract", media_type, len(data)))
        if self.error:
            raise self.error
        return self.extraction

    def extract_statement(self, pdf):
        self.calls.append(("statement", "application/pdf", len(pdf)))
        if self.error:
            raise self.error
        return self.statement


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def store(tmp_path, sleeps):
    s = SQLiteTransactionStore(tmp_path / "expenses.sqlite")
    s.retry.sleep = sleeps.append
    return s


@pytest.fixture
def extraction():
    return ReceiptExtraction(date="2024-03-10", amount=42.9, city="Campinas",
                             category="Refeição", notes="Restaurante Bom Prato")


@pytest.fixture
def tracker(store, extraction):
    return ExpenseTracker(store, FakeExtractor(extraction=extraction), "user-1",
                          operations=["Obra Centro", "Obra Norte"])


@pytest.fixture
def png_bytes():
    import io
    from PIL import Image

    buf = io.BytesIO()
    Image.new("RGBA", (2048, 1024), (0, 0, 0, 0)).save(buf, format="PNG")
    return buf.getvalue()


def data_uri(payload: bytes, media_type: str) -> str:
    return f"data:{media_type};base64,{base64.b64encode(payload).decode('ascii')}"
