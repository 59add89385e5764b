import pytest

from field_expenses.core.llm import (ExtractionAuthError, ExtractionError, PARTIAL_READ_NOTE,
                                     ReceiptExtractor, is_transient_error,
                                     parse_receipt_response, parse_statement_response)
from field_expenses.core.parsers import extract_json_block, parse_amount, parse_date
from field_expenses.core.retry import RetryPolicy
from field_expenses.core.utils import today_iso

from conftest import StatusError, fake_openai_client


def make_extractor(*outcomes, sleeps=None):
    client, completions = fake_openai_client(*outcomes)
    retry = RetryPolicy(max_attempts=3, delay=1.0,
                        give_up=lambda e: not is_transient_error(e),
                        sleep=(sleeps.append if sleeps is not None else lambda s: None))
    return ReceiptExtractor(provider="openai", client=client, retry=retry), completions


def test_extract_json_block_salvages_fenced_answer():
    text = 'Here you go:\n```json\n{"amount": 10.5, "date": "2024-01-02"}\n```\nThanks'
    assert extract_json_block(text) == {"amount": 10.5, "date": "2024-01-02"}
    assert extract_json_block('noise [{"a": 1}] more', "array") == [{"a": 1}]
    assert extract_json_block("no json here") is None
    assert extract_json_block('{"broken": ') is None


def test_amount_and_date_patterns():
    assert parse_amount("TOTAL R$ 1.234,56") == 1234.56
    assert parse_amount("Valor 100.00") == 100.0
    assert parse_amount("nothing") is None
    assert parse_date("emitida em 25/10/2023 as 10h") == "2023-10-25"
    assert parse_date("2023-10-25T10:00") == "2023-10-25"
    assert parse_date("sem data") is None
    assert parse_date("data 5/1/2024") == "2024-01-05"
    assert parse_date("vencimento 31/02/2024, emissao 28/02/2024") == "2024-02-28"
    assert parse_date("2024-13-45") is None


def test_amount_skips_digit_runs_that_are_not_amounts():
    assert parse_amount("CNPJ 12.345.678 TOTAL 45,90") == 45.9


def test_json_answer_is_normalized():
    result = parse_receipt_response('{"amount": "10,50", "date": "2024-02-01", "city": " Campinas ",'
                                    ' "category": "refeição", "notes": "Padaria"}')
    assert result.amount == 10.5
    assert result.date == "2024-02-01"
    assert result.city == "Campinas"
    assert result.category == "Refeição"
    assert not result.partial


def test_unknown_category_is_kept_as_free_text():
    result = parse_receipt_response('{"amount": 5, "date": "2024-02-01", "category": "Brindes"}')
    assert result.category == "Brindes"


def test_plain_text_answer_uses_regex_fallback():
    result = parse_receipt_response("O total da nota foi 42,90, obrigado")
    assert result.amount == 42.9
    assert result.date == today_iso()
    assert result.category == "Refeição"
    assert result.notes == PARTIAL_READ_NOTE
    assert result.partial


def test_statement_answer_parsing():
    assert parse_statement_response('```json\n[{"date": "2024-01-01", "amount": 1}]\n```') == [
        {"date": "2024-01-01", "amount": 1}]
    assert parse_statement_response("I could not read it") is None


def test_extract_sends_image_and_asks_for_json():
    extractor, completions = make_extractor('{"amount": 12.0, "date": "2024-03-01"}')
    result = extractor.extract(b"\xff\xd8jpeg", "image/jpeg")

    assert result.amount == 12.0
    call = completions.calls[0]
    assert call["response_format"] == {"type": "json_object"}
    parts = call["messages"][0]["content"]
    assert parts[0]["type"] == "image_url"
    assert parts[0]["image_url"]["url"].startswith("data:image/jpeg;base64,")


def test_transient_errors_are_retried():
    sleeps = []
    extractor, completions = make_extractor(StatusError(503), StatusError(429),
                                            '{"amount": 3, "date": "2024-03-01"}', sleeps=sleeps)
    assert extractor.extract(b"img").amount == 3.0
    assert len(completions.calls) == 3
    assert sleeps == [1.0, 1.0]


def test_exhausted_retries_raise_extraction_error():
    extractor, completions = make_extractor(StatusError(500), StatusError(500), StatusError(500))
    with pytest.raises(ExtractionError) as exc:
        extractor.extract(b"img")
    assert not isinstance(exc.value, ExtractionAuthError)
    assert len(completions.calls) == 3


def test_auth_error_fails_fast():
    extractor, completions = make_extractor(StatusError(401), '{"amount": 1}')
    with pytest.raises(ExtractionAuthError, match="API key"):
        extractor.extract(b"img")
    assert len(completions.calls) == 1


def test_statement_extraction_does_not_force_json_object():
    extractor, completions = make_extractor('[{"date": "2024-01-01", "amount": 2.5}]')
    assert extractor.extract_statement(b"%PDF") == [{"date": "2024-01-01", "amount": 2.5}]
    call = completions.calls[0]
    assert "response_format" not in call
    assert call["messages"][0]["content"][0]["type"] == "file"


def test_unknown_provider_is_rejected():
    with pytest.raises(ValueError):
        ReceiptExtractor(provider="gemini")
