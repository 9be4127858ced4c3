"""
검증 규칙 테스트
"""

import pytest
from hypothesis import given, strategies as st

from safeguard.core.verification import (
    VERIFICATION_THRESHOLD,
    apply_confirmation,
    apply_verification,
    counts_toward_threshold,
    is_verified_count,
)


class TestVerificationRule:
    """검증 임계값 규칙 테스트"""

    def test_third_confirmation_flips_verified(self, make_record):
        """세 번째 confirm에서 is_verified가 True로 바뀜"""
        record = make_record()

        first = apply_confirmation(record)
        second = apply_confirmation(first)
        third = apply_confirmation(second)

        assert (first.verification_count, first.is_verified) == (1, False)
        assert (second.verification_count, second.is_verified) == (2, False)
        assert (third.verification_count, third.is_verified) == (3, True)

    def test_original_record_is_unchanged(self, make_record):
        record = make_record(verification_count=2)

        updated = apply_verification(record, "confirm", now="2025-06-01T00:00:00+00:00")

        assert record.verification_count == 2
        assert updated.verification_count == 3
        assert updated.updated_at == "2025-06-01T00:00:00+00:00"

    @pytest.mark.parametrize("verification_type", ["dispute", "additional_info"])
    def test_non_confirm_types_do_not_count(self, make_record, verification_type):
        record = make_record(verification_count=2)

        assert apply_verification(record, verification_type) is record
        assert not counts_toward_threshold(verification_type)

    def test_verified_record_stays_verified(self, make_record):
        record = make_record(verification_count=0, is_verified=True)

        assert apply_confirmation(record).is_verified is True

    def test_threshold_constant(self):
        assert VERIFICATION_THRESHOLD == 3
        assert not is_verified_count(2)
        assert is_verified_count(3)

    @given(st.integers(min_value=0, max_value=10))
    def test_verified_iff_threshold_reached(self, confirmations):
        """n번 confirm 후 is_verified == (n >= 3)"""
        from safeguard.core.models import IncidentRecord

        record = IncidentRecord(id="inc-h", title="t")
        for _ in range(confirmations):
            record = apply_confirmation(record)

        assert record.verification_count == confirmations
        assert record.is_verified == (confirmations >= VERIFICATION_THRESHOLD)
