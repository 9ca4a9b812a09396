from reconsafe.services.scoring import (
    score_amount,
    score_candidate,
    score_date_proximity,
    score_description,
)


class TestAmountScoring:
    def test_exact_within_one_percent(self):
        match = score_amount(1005.0, 1000.0)
        assert match.kind == "exact"
        assert match.score == 40

    def test_close_and_approximate_tiers(self):
        assert score_amount(1030.0, 1000.0).score == 25
        assert score_amount(1080.0, 1000.0).score == 10

    def test_outside_tiers_scores_nothing(self):
        match = score_amount(1200.0, 1000.0)
        assert match.score == 0
        assert match.kind is None
        assert abs(match.diff_ratio - 0.2) < 1e-9

    def test_non_positive_outstanding_uses_full_ratio(self):
        match = score_amount(500.0, 0.0)
        assert match.diff_ratio == 1.0
        assert match.score == 0


class TestDescriptionScoring:
    def test_invoice_number_beats_customer_name(self):
        match = score_description("Payment INV-42 from Acme Ltd", "INV-42", "Acme")
        assert match.kind == "invoice_number"
        assert match.score == 30

    def test_customer_name_case_insensitive(self):
        match = score_description("TRANSFER FROM ACME LTD", "INV-99", "acme ltd")
        assert match.kind == "customer_name"
        assert match.score == 20

    def test_missing_text_never_raises(self):
        assert score_description(None, None, None).score == 0
        assert score_description("anything", "", "   ").score == 0


class TestDateProximity:
    def test_tiers(self):
        assert score_date_proximity("2024-03-01", "2024-03-03").score == 15
        assert score_date_proximity("2024-03-01", "2024-03-06").score == 10
        assert score_date_proximity("2024-03-01", "2024-03-11").score == 5

    def test_far_dates_record_days_without_points(self):
        proximity = score_date_proximity("2024-03-01", "2024-03-21")
        assert proximity.days == 20
        assert proximity.score == 0

    def test_missing_date(self):
        proximity = score_date_proximity(None, "2024-03-01")
        assert proximity.days is None
        assert proximity.score == 0


def test_full_match_scores_85_with_rationale():
    result = score_candidate(
        bank_amount=1000.0,
        invoice_outstanding=1000.0,
        bank_description="Payment for INV-100",
        invoice_number="INV-100",
        customer_name="Acme",
        bank_date="2024-03-01",
        invoice_due_date="2024-03-01T00:00:00Z",
    )
    assert result.score == 85
    assert result.admitted
    assert result.rationale == {
        "amount_diff_ratio": 0.0,
        "amount_match_score": 40,
        "description_match_score": 30,
        "date_proximity_score": 15,
        "amount_match": "exact",
        "description_match": "invoice_number",
        "date_proximity_days": 0,
    }


def test_admission_threshold():
    assert score_candidate(1080.0, 1000.0, bank_date="2024-03-01", invoice_due_date="2024-03-09").score == 15
    assert not score_candidate(1080.0, 1000.0).admitted
    assert score_candidate(1000.0, 1000.0).admitted


def test_rationale_omits_unmatched_components():
    rationale = score_candidate(1500.0, 1000.0).rationale
    assert "amount_match" not in rationale
    assert "description_match" not in rationale
    assert "date_proximity_days" not in rationale
    assert rationale["amount_match_score"] == 0


def test_half_amount_difference_without_text_or_date_is_excluded():
    result = score_candidate(1500.0, 1000.0, bank_description="unrelated", invoice_number="INV-1")
    assert result.score == 0
    assert not result.admitted


def test_score_bounded_and_sub_scores_sum_to_total():
    cases = [
        (1000.0, 1000.0, "INV-1 Acme", "INV-1", "Acme", "2024-01-01", "2024-01-01"),
        (1040.0, 1000.0, "acme", "INV-1", "Acme", "2024-01-01", "2024-01-06"),
        (1000.0, 0.0, None, None, None, None, None),
        (-250.0, 1000.0, "", "INV-2", None, "2024-01-01", "2023-12-20"),
    ]
    for case in cases:
        result = score_candidate(*case)
        rationale = result.rationale
        assert 0 <= result.score <= 100
        assert result.score == (
            rationale["amount_match_score"]
            + rationale["description_match_score"]
            + rationale["date_proximity_score"]
        )
