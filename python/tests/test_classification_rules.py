"""
Unit tests for strategic / AI product-line classification
"""

import copy

import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from classification_rules import ClassificationRules, classify
from compliance_errors import ValidationError
from compliance_models import ProductLine
from config_manager import ClassificationConfig


@pytest.fixture
def plain_line():
    return ProductLine(
        id="line-1",
        description="Voltage regulator",
        category="standard_ic_asics",
        hs_code="8542.39.00",
        quantity=500,
        commercial_value=1200,
        end_use_purpose="Consumer routers"
    )


class TestStrategicRules:
    """Category, HS prefix and end-use rules"""

    @pytest.mark.parametrize("category", ["military_grade", "high_performance_computing",
                                          "ai_accelerator_gpu_tpu_npu"])
    def test_strategic_categories(self, classifier, plain_line, category):
        plain_line.category = category
        assert classifier.classify(plain_line).is_strategic is True

    def test_plain_line_is_not_strategic(self, classifier, plain_line):
        result = classifier.classify(plain_line)
        assert result.is_strategic is False
        assert result.is_ai_related is False
        assert result.reasons == ()

    @pytest.mark.parametrize("hs_code", ["8542.31.0001", "8542.32", "8473.30.11", "854233", "8542 31 00"])
    def test_strategic_hs_prefixes(self, classifier, plain_line, hs_code):
        plain_line.hs_code = hs_code
        result = classifier.classify(plain_line)
        assert result.is_strategic is True
        assert any(r.startswith("hs_prefix:") for r in result.reasons)

    @pytest.mark.parametrize("hs_code", ["8542.39", "8541.10", "", "85"])
    def test_other_hs_codes_not_strategic(self, classifier, plain_line, hs_code):
        plain_line.hs_code = hs_code
        assert classifier.classify(plain_line).is_strategic is False

    def test_end_use_keyword_case_insensitive(self, classifier, plain_line):
        plain_line.end_use_purpose = "Supplied to a DEFENSE integrator"
        result = classifier.classify(plain_line)
        assert result.is_strategic is True
        assert "end_use:defense" in result.reasons

    def test_military_end_use(self, classifier, plain_line):
        plain_line.end_use_purpose = "military radar upgrade"
        assert classifier.classify(plain_line).is_strategic is True


class TestAIRules:
    """AI category and keyword rules"""

    def test_neural_processing_category(self, classifier, plain_line):
        plain_line.category = "neural_processing"
        result = classifier.classify(plain_line)
        assert result.is_ai_related is True
        assert result.is_strategic is False

    def test_accelerator_category_alone_sets_ai_flag(self, classifier):
        line = ProductLine(id="line-2", description="Compute card", category="ai_accelerator_gpu_tpu_npu")
        result = classifier.classify(line)
        assert result.is_ai_related is True
        assert result.is_strategic is True
        assert "ai_category:ai_accelerator_gpu_tpu_npu" in result.reasons

    @pytest.mark.parametrize("description", ["Tensor core module", "GPU board", "Deep Learning appliance",
                                             "Neural inference chip"])
    def test_ai_keywords_in_description(self, classifier, plain_line, description):
        plain_line.description = description
        assert classifier.classify(plain_line).is_ai_related is True

    def test_ai_keyword_in_end_use(self, classifier, plain_line):
        plain_line.end_use_purpose = "machine learning cluster"
        result = classifier.classify(plain_line)
        assert result.is_ai_related is True
        assert "ai_keyword:machine learning" in result.reasons

    def test_keyword_match_is_plain_substring(self, classifier, plain_line):
        # 'ai' inside another word still counts
        plain_line.description = "Maintenance spares"
        assert classifier.classify(plain_line).is_ai_related is True


class TestPurity:
    """Classification is a pure function of the current field values"""

    def test_repeated_calls_identical(self, classifier, plain_line):
        plain_line.category = "military_grade"
        before = copy.deepcopy(plain_line)
        results = [classifier.classify(plain_line) for _ in range(5)]
        assert all(r == results[0] for r in results)
        assert plain_line == before

    def test_reclassify_after_edit(self, classifier, plain_line):
        assert classifier.classify(plain_line).is_strategic is False
        plain_line.hs_code = "8542.31"
        assert classifier.classify(plain_line).is_strategic is True
        plain_line.hs_code = "8542.39"
        assert classifier.classify(plain_line).is_strategic is False

    def test_classify_all_keeps_order(self, classifier, plain_line):
        other = ProductLine(id="line-2", category="neural_processing")
        results = classifier.classify_all([plain_line, other])
        assert [r.is_ai_related for r in results] == [False, True]

    def test_rejects_non_product_line(self, classifier):
        with pytest.raises(ValidationError) as exc_info:
            classifier.classify({"id": "line-1"})
        assert exc_info.value.code == "INVALID_PRODUCT_LINE"

    def test_to_dict(self, classifier):
        result = classifier.classify(ProductLine(id="x", category="military_grade"))
        assert result.to_dict() == {
            'is_strategic': True,
            'is_ai_related': False,
            'reasons': ['category:military_grade']
        }


class TestSubstitutedRules:
    """Rule tables come from configuration"""

    def test_custom_keywords(self):
        rules = ClassificationRules(ClassificationConfig(ai_keywords=["quantum"], strategic_hs_prefixes=["9013"]))
        line = ProductLine(id="q", description="Quantum annealer", hs_code="9013.80", category="unsure")
        result = rules.classify(line)
        assert result.is_ai_related is True
        assert result.is_strategic is True

    def test_default_keyword_ignored_when_replaced(self):
        rules = ClassificationRules(ClassificationConfig(ai_keywords=["quantum"]))
        line = ProductLine(id="g", description="GPU board")
        assert rules.classify(line).is_ai_related is False

    def test_module_level_classify(self):
        assert classify(ProductLine(id="m", category="military_grade")).is_strategic is True

    def test_known_categories(self, classifier):
        assert classifier.is_known_category("memory_nand_dram") is True
        assert classifier.is_known_category("bananas") is False
