"""
Unit tests for record normalization
"""

import pytest
from core.exceptions import DataFormatError, is_retryable
from ingestion.pipeline import NORMALIZERS
from ingestion.transformers.normalizer import RecordNormalizer
from schemas.records import LoadedRecordCreate


class TestRecordNormalizer:
    """Test normalization of Omie records"""

    def test_normalize_movimento(self, omie_movimento):
        record = NORMALIZERS["movimentos_financeiros"](omie_movimento)

        assert isinstance(record, LoadedRecordCreate)
        assert record.entity == "movimentos_financeiros"
        assert record.external_id == "8754123"
        assert record.payload["dDtEmissao"] == "2024-01-05"
        assert record.payload["dDtVenc"] == "2024-02-05"
        assert record.payload["dDtPagamento"] is None
        assert record.payload["nValorTitulo"] == 1520.46
        assert record.payload["nValorCOFINS"] == 45.61
        assert record.payload["nValorIR"] == 0.0
        assert record.payload["cCodCateg"] == "1.01.02"

    def test_falls_back_to_integration_code(self, omie_movimento):
        omie_movimento["detalhes"]["nCodTitulo"] = 0

        record = NORMALIZERS["movimentos_financeiros"](omie_movimento)

        assert record.external_id == "TIT-0001"

    def test_missing_identifier(self, omie_movimento):
        del omie_movimento["detalhes"]["nCodTitulo"]
        omie_movimento["detalhes"]["cCodIntTitulo"] = "  "

        with pytest.raises(DataFormatError) as exc_info:
            NORMALIZERS["movimentos_financeiros"](omie_movimento)

        assert not is_retryable(exc_info.value)

    def test_missing_detail_object(self):
        with pytest.raises(DataFormatError):
            NORMALIZERS["movimentos_financeiros"]({"resumo": {}})

    def test_invalid_amount(self, omie_movimento):
        omie_movimento["detalhes"]["nValorTitulo"] = "R$ 10,00"

        with pytest.raises(DataFormatError) as exc_info:
            NORMALIZERS["movimentos_financeiros"](omie_movimento)

        assert exc_info.value.context["field_name"] == "nValorTitulo"

    def test_unparseable_date_becomes_null(self, omie_movimento):
        omie_movimento["detalhes"]["dDtVenc"] = "31/02/2024"

        record = NORMALIZERS["movimentos_financeiros"](omie_movimento)

        assert record.payload["dDtVenc"] is None

    def test_non_dict_record(self):
        with pytest.raises(DataFormatError):
            RecordNormalizer(entity="categorias", id_fields=("codigo",))(["not", "a", "dict"])

    def test_normalize_categoria(self):
        record = NORMALIZERS["categorias"]({"codigo": " 2.01.03 ", "descricao": "Despesas"})

        assert record.external_id == "2.01.03"
        assert record.payload == {"codigo": " 2.01.03 ", "descricao": "Despesas"}

    def test_input_is_not_mutated(self, omie_movimento):
        original_date = omie_movimento["detalhes"]["dDtEmissao"]

        NORMALIZERS["movimentos_financeiros"](omie_movimento)

        assert omie_movimento["detalhes"]["dDtEmissao"] == original_date


class TestLoadedRecordCreate:
    """Test record schema validation"""

    def test_external_id_is_stripped(self):
        record = LoadedRecordCreate(entity="categorias", external_id=" 42 ")
        assert record.external_id == "42"

    def test_numeric_external_id(self):
        record = LoadedRecordCreate(entity="categorias", external_id=42)
        assert record.external_id == "42"

    def test_blank_external_id_rejected(self):
        with pytest.raises(ValueError):
            LoadedRecordCreate(entity="categorias", external_id="   ")
